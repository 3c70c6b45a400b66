class AutomationError(Exception):
    """Base class for every error raised by the automation core."""


class ConfigError(AutomationError):
    """Required credentials or configuration are missing. Not retried."""


class CapacityExceeded(AutomationError):
    """The active-job cap for a channel (or globally) is already met."""

    def __init__(self, active_count: int, max_active: int, channel_id: str | None = None):
        self.active_count = active_count
        self.max_active = max_active
        self.channel_id = channel_id
        scope = f"channel {channel_id}" if channel_id else "all channels"
        super().__init__(f"Active job limit reached for {scope} ({active_count}/{max_active})")


class MatchTimeout(AutomationError):
    """No deliverable was matched to a request before the polling deadline."""

    def __init__(self, request_ref: int, timeout_s: float):
        self.request_ref = request_ref
        self.timeout_s = timeout_s
        super().__init__(f"Timed out waiting for a video for request {request_ref} ({int(timeout_s)}s)")


class TransientExternalError(AutomationError):
    """Network or service failure in a consumed external API."""


class DownloadVerificationError(TransientExternalError):
    """A downloaded artifact was missing or empty."""


class DataIntegrityError(AutomationError):
    """A record disappeared or changed underneath a running pipeline."""


class JobNotFound(AutomationError, LookupError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ChannelNotFound(AutomationError, LookupError):
    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        super().__init__(f"Channel {channel_id} not found")


class RunNotFound(AutomationError, LookupError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found")


class InvalidTransition(AutomationError):
    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id} cannot move from '{current}' to '{target}'")


class JobCancelled(AutomationError):
    """The job was cancelled, rejected or deleted while its pipeline ran."""


class IdeaParseError(AutomationError, ValueError):
    """The text generator's payload held no usable idea."""


class RunNotAllowed(AutomationError):
    """A manual run was requested for a channel that is disabled or already running."""
