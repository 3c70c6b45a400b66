# videogen/clients/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Attachment(BaseModel):
    """A file attached to an inbound chat message."""

    kind: str = Field(..., description="Attachment kind, e.g. 'video' or 'photo'")
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    size: Optional[int] = None


class InboundMessage(BaseModel):
    """A message read back from the generation chat."""

    id: int
    sender_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    back_reference: Optional[int] = Field(None, description="Id of the message this one replies to")
    timestamp: datetime
    text: Optional[str] = None

    @property
    def has_video(self) -> bool:
        return any(a.kind == "video" for a in self.attachments)


class ChannelBrief(BaseModel):
    """What the text generator needs to know about a channel."""

    name: str
    description: Optional[str] = None
    language: str = "ru"
    duration_seconds: int = 8
    idea_prompt_template: Optional[str] = None
    video_prompt_template: Optional[str] = None
    avoid_ideas: List[str] = Field(default_factory=list, description="Idea texts already used")


class IdeaDraft(BaseModel):
    """One idea produced by the text generator."""

    idea_text: str
    prompt: str
    title: Optional[str] = None


class UploadResult(BaseModel):
    file_id: str
    view_link: Optional[str] = None
    download_link: Optional[str] = None


class NotifyResult(BaseModel):
    sent: int = 0
    invalid_tokens: List[str] = Field(default_factory=list)


class GenerationChannel(ABC):
    """
    Chat with the external video generation worker.

    Requests are dispatched as messages; the worker replies asynchronously
    with a video attachment, ideally as a reply to the request message.
    """

    @property
    @abstractmethod
    def peer(self) -> str:
        """Identifier of the worker account replies are expected from."""

    @abstractmethod
    def dispatch(self, text: str) -> int:
        """
        Send a generation request.

        Returns:
            The id of the sent message (the request reference)
        """

    @abstractmethod
    def list_recent(self, peer: str, limit: int) -> List[InboundMessage]:
        """Most recent messages in the conversation with ``peer``, newest first."""

    @abstractmethod
    def download(self, message_id: int) -> bytes:
        """Raw bytes of the video attached to ``message_id``."""


class TextGenerator(ABC):
    @abstractmethod
    def generate(self, brief: ChannelBrief) -> Any:
        """
        Produce an idea payload for the channel.

        The payload may be a JSON string, a parsed object or a list; callers
        run it through ``videogen.clients.ideas.parse_idea_payload``.
        """


class FileStorage(ABC):
    @abstractmethod
    def upload(self, local_path: Path, name: str, folder_id: str) -> UploadResult:
        """Upload a local file into ``folder_id`` under ``name``."""


class PushNotifier(ABC):
    @abstractmethod
    def notify(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> NotifyResult:
        """Deliver a notification; tokens the provider rejects come back in ``invalid_tokens``."""
