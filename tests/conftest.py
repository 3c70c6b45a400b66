# tests/conftest.py
"""Global test configuration and fixtures."""
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from automation_server.db.engine import set_engine
from videogen.clients.base import (
    Attachment,
    ChannelBrief,
    FileStorage,
    GenerationChannel,
    InboundMessage,
    NotifyResult,
    PushNotifier,
    TextGenerator,
    UploadResult,
)
from videogen.clients.registry import ClientRegistry
from videogen.schedule.clock import utcnow

WORKER_PEER = "video-worker"


class FakeGenerationChannel(GenerationChannel):
    """
    In-memory generation chat.

    With ``auto_reply`` every dispatched request is answered right away by a
    video reply that references it.
    """

    def __init__(self, auto_reply: bool = True, first_id: int = 100):
        self.auto_reply = auto_reply
        self.messages: List[InboundMessage] = []
        self.dispatched: List[str] = []
        self.payloads: Dict[int, bytes] = {}
        self._next_id = first_id
        self._lock = threading.Lock()

    @property
    def peer(self) -> str:
        return WORKER_PEER

    def _new_id(self) -> int:
        with self._lock:
            message_id = self._next_id
            self._next_id += 1
        return message_id

    def dispatch(self, text: str) -> int:
        request_id = self._new_id()
        self.dispatched.append(text)
        self.messages.append(InboundMessage(id=request_id, sender_id="me", timestamp=utcnow(), text=text))
        if self.auto_reply:
            self.reply(back_reference=request_id)
        return request_id

    def reply(
        self,
        back_reference: Optional[int] = None,
        sender_id: str = WORKER_PEER,
        video: bool = True,
        timestamp: Optional[datetime] = None,
        message_id: Optional[int] = None,
        data: bytes = b"fake-mp4-bytes",
    ) -> InboundMessage:
        message = InboundMessage(
            id=message_id if message_id is not None else self._new_id(),
            sender_id=sender_id,
            attachments=[Attachment(kind="video" if video else "photo", mime_type="video/mp4")],
            back_reference=back_reference,
            timestamp=timestamp or utcnow(),
        )
        self.messages.append(message)
        self.payloads[message.id] = data
        return message

    def list_recent(self, peer: str, limit: int) -> List[InboundMessage]:
        return sorted(self.messages, key=lambda m: m.id, reverse=True)[:limit]

    def download(self, message_id: int) -> bytes:
        return self.payloads.get(message_id, b"")


class FakeTextGenerator(TextGenerator):
    """Returns one JSON idea per call; channels named in ``failing`` raise."""

    def __init__(self, failing: tuple = ()):
        self.failing = failing
        self.briefs: List[ChannelBrief] = []

    def generate(self, brief: ChannelBrief) -> Any:
        self.briefs.append(brief)
        if brief.name in self.failing:
            raise RuntimeError(f"Text generation unavailable for {brief.name}")
        n = len(self.briefs)
        return json.dumps(
            {
                "idea_title": f"Idea {n}",
                "idea_description": f"A short story number {n} for {brief.name}",
                "veo_prompt": f"Cinematic shot number {n}",
                "video_title": f"Video {n}",
            }
        )


class FakeStorage(FileStorage):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[Dict[str, Any]] = []

    def upload(self, local_path: Path, name: str, folder_id: str) -> UploadResult:
        if self.fail:
            raise ConnectionError("connection refused")
        self.uploads.append({"path": local_path, "name": name, "folder_id": folder_id})
        n = len(self.uploads)
        return UploadResult(
            file_id=f"file-{n}",
            view_link=f"https://storage.test/view/file-{n}",
            download_link=f"https://storage.test/download/file-{n}",
        )


class FakePushNotifier(PushNotifier):
    def __init__(self, invalid: tuple = ()):
        self.invalid = invalid
        self.sent: List[Dict[str, Any]] = []

    def notify(self, tokens, title, body, data=None) -> NotifyResult:
        self.sent.append({"tokens": list(tokens), "title": title, "body": body, "data": data})
        bad = [t for t in tokens if t in self.invalid]
        return NotifyResult(sent=len(tokens) - len(bad), invalid_tokens=bad)


@pytest.fixture(autouse=True)
def db_engine():
    """Fresh in-memory database for every test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    set_engine(engine)
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def reset_clients():
    ClientRegistry.clear_all()
    yield
    ClientRegistry.clear_all()


@pytest.fixture(autouse=True)
def download_dir(tmp_path, monkeypatch):
    """Route downloaded videos into the test's temp dir."""
    directory = tmp_path / "downloads"
    monkeypatch.setattr("videogen.files.DOWNLOAD_DIR", directory)
    return directory


@pytest.fixture
def generation():
    client = FakeGenerationChannel()
    ClientRegistry.configure(generation=client)
    return client


@pytest.fixture
def text_generator():
    generator = FakeTextGenerator()
    ClientRegistry.configure(text=generator)
    return generator


@pytest.fixture
def storage():
    client = FakeStorage()
    ClientRegistry.configure(storage=client)
    return client


@pytest.fixture
def push():
    notifier = FakePushNotifier(invalid=("stale-token",))
    ClientRegistry.configure(push=notifier)
    return notifier


@pytest.fixture
def make_channel():
    """Factory creating a channel row through the store."""
    from automation_server.services.channels import create_channel

    def _make(**overrides):
        payload = {
            "name": "Test channel",
            "description": "Short facts about space",
            "automation_enabled": True,
            "days_of_week": ["Mon"],
            "times": ["10:00"],
            "time_zone": "Asia/Tashkent",
            "max_active_tasks": 2,
        }
        payload.update(overrides)
        return create_channel(payload)

    return _make


@pytest.fixture
def failing_text_generator():
    """Text generator that fails for channels named "Broken"."""
    generator = FakeTextGenerator(failing=("Broken",))
    ClientRegistry.configure(text=generator)
    return generator
