# automation_server/db/models.py

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Channel(Base):
    """A content channel with its automation schedule and runtime lease."""

    __tablename__ = "channels"

    channel_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    language = Column(String, default="ru", nullable=False)  # "ru", "kk", "en"
    duration_seconds = Column(Integer, default=8, nullable=False)
    idea_prompt_template = Column(Text, nullable=True)
    video_prompt_template = Column(Text, nullable=True)
    drive_folder_id = Column(String, nullable=True)  # Destination override for uploads
    external_url = Column(String, nullable=True)

    # Automation config
    automation_enabled = Column(Boolean, default=False, nullable=False)
    days_of_week = Column(JSON, nullable=True)  # ["Mon", "Tue"] or ["1", "2"]
    times = Column(JSON, nullable=True)  # ["10:00", "22:30"]
    time_zone = Column(String, nullable=True)
    max_active_tasks = Column(Integer, nullable=True)
    auto_approve_and_upload = Column(Boolean, default=False, nullable=False)
    use_only_fresh_ideas = Column(Boolean, default=False, nullable=False)

    # Runtime state; is_running/run_id/lease_acquired_at form the lease
    is_running = Column(Boolean, default=False, nullable=False, index=True)
    run_id = Column(String, nullable=True)
    lease_acquired_at = Column(DateTime(timezone=True), nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, default="idle", nullable=False)  # "idle", "running", "success", "error"
    status_message = Column(Text, nullable=True)
    current_step = Column(String, nullable=True)
    last_status_at = Column(DateTime(timezone=True), nullable=True)
    manual_stopped_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Job(Base):
    """A single video generation job."""

    __tablename__ = "jobs"

    job_id = Column(String, primary_key=True)  # UUID
    channel_id = Column(String, nullable=True, index=True)
    channel_name = Column(String, nullable=True)
    is_auto = Column(Boolean, default=False, nullable=False)
    status = Column(String, nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    idea_text = Column(Text, nullable=True)
    video_title = Column(String, nullable=True)

    result_path = Column(String, nullable=True)
    preview_path = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    storage_paths = Column(JSON, nullable=True)

    external_request_ref = Column(Integer, nullable=True)  # Id of the dispatched message
    external_deliverable_ref = Column(Integer, nullable=True, index=True)  # Id of the matched reply
    matching_method = Column(String, nullable=True)  # "explicit-reference", "heuristic-fallback"

    error_message = Column(Text, nullable=True)
    drive_file_id = Column(String, nullable=True)
    web_view_link = Column(String, nullable=True)
    web_content_link = Column(String, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    lease_run_id = Column(String, nullable=True)  # Channel lease held by the run that created an auto job

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)


class Run(Base):
    """One pass of the scheduled automation over all channels."""

    __tablename__ = "runs"

    run_id = Column(String, primary_key=True)  # UUID
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    scheduler_invocation_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="running")  # "running", "success", "partial", "error"
    channels_planned = Column(Integer, default=0, nullable=False)
    channels_processed = Column(Integer, default=0, nullable=False)
    jobs_created = Column(Integer, default=0, nullable=False)
    errors_count = Column(Integer, default=0, nullable=False)
    last_error_message = Column(Text, nullable=True)
    timezone = Column(String, nullable=True)
    channels = Column(JSON, nullable=True)  # Per-channel check records
    tasks = Column(JSON, nullable=True)  # Created-job summaries


class Event(Base):
    """Flat audit event emitted during a run or a job pipeline."""

    __tablename__ = "events"

    event_id = Column(String, primary_key=True)  # UUID
    run_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    level = Column(String, nullable=False, default="info")  # "info", "warn", "error"
    step = Column(String, nullable=False, default="other")
    channel_id = Column(String, nullable=True, index=True)
    channel_name = Column(String, nullable=True)
    job_id = Column(String, nullable=True, index=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)


class Reservation(Base):
    """Claim of an inbound deliverable by exactly one job."""

    __tablename__ = "reservations"

    deliverable_id = Column(Integer, primary_key=True, autoincrement=False)
    job_id = Column(String, nullable=False, index=True)
    matching_method = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PushToken(Base):
    """Device token registered for push notifications."""

    __tablename__ = "push_tokens"

    token = Column(String, primary_key=True)
    owner = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
