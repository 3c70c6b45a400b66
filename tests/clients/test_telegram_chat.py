# tests/clients/test_telegram_chat.py
"""Test the Telegram generation chat against an in-memory Telethon stand-in."""
import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from telethon.errors import RPCError

from videogen.clients.telegram_chat import TelegramGenerationChannel, to_inbound
from videogen.errors import ConfigError, TransientExternalError

PEER = "video-worker"
SENT_AT = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)


def _message(message_id, out=False, reply_to=None, video=True, photo=False, text=""):
    return SimpleNamespace(
        id=message_id,
        out=out,
        date=SENT_AT,
        message=text,
        reply_to_msg_id=reply_to,
        video=object() if video else None,
        photo=object() if photo else None,
        document=object() if video else None,
        file=SimpleNamespace(mime_type="video/mp4", name="clip.mp4", size=2048) if video else None,
    )


class FakeTelethon:
    def __init__(self, messages=()):
        self.messages = list(messages)
        self.sent = []
        self.disconnected = False

    async def send_message(self, peer, text):
        self.sent.append((peer, text))
        return SimpleNamespace(id=500)

    async def get_messages(self, peer, limit=None, ids=None):
        if ids is not None:
            return next((m for m in self.messages if m.id == ids), None)
        return self.messages[:limit]

    async def download_media(self, message, file=None):
        return b"video-bytes"

    async def disconnect(self):
        self.disconnected = True


@pytest.fixture
def make_chat():
    chats = []

    def _make(fake, call_timeout_s=5):
        async def connect():
            return fake

        chat = TelegramGenerationChannel(PEER, connect, call_timeout_s=call_timeout_s)
        chats.append(chat)
        return chat

    yield _make
    for chat in chats:
        chat.close()


class TestToInbound:
    def test_worker_video_reply(self):
        inbound = to_inbound(_message(101, reply_to=100), PEER)
        assert inbound.sender_id == PEER
        assert inbound.has_video
        assert inbound.back_reference == 100
        assert inbound.attachments[0].mime_type == "video/mp4"
        assert inbound.timestamp == SENT_AT

    def test_own_message_and_photo(self):
        own = to_inbound(_message(100, out=True, video=False, text="prompt"), PEER)
        assert own.sender_id == "me"
        assert own.attachments == []
        assert own.text == "prompt"

        photo = to_inbound(_message(102, video=False, photo=True), PEER)
        assert [a.kind for a in photo.attachments] == ["photo"]
        assert not photo.has_video


class TestTelegramGenerationChannel:
    """Test dispatch, listing and download through the private event loop."""

    def test_dispatch_returns_message_id(self, make_chat):
        fake = FakeTelethon()
        chat = make_chat(fake)
        assert chat.dispatch("Cinematic shot") == 500
        assert fake.sent == [(PEER, "Cinematic shot")]

    def test_list_recent_maps_messages(self, make_chat):
        fake = FakeTelethon([_message(102, reply_to=100), _message(100, out=True, video=False)])
        chat = make_chat(fake)

        messages = chat.list_recent(PEER, 50)

        assert [m.id for m in messages] == [102, 100]
        assert [m.sender_id for m in messages] == [PEER, "me"]

    def test_download(self, make_chat):
        chat = make_chat(FakeTelethon([_message(102)]))
        assert chat.download(102) == b"video-bytes"
        assert chat.download(999) == b""

    def test_rpc_errors_are_transient(self, make_chat):
        fake = FakeTelethon()
        chat = make_chat(fake)

        async def refuse(peer, limit=None, ids=None):
            raise RPCError(None, "INTERNAL", 500)

        fake.get_messages = refuse
        with pytest.raises(TransientExternalError):
            chat.list_recent(PEER, 10)

    def test_connection_errors_are_transient(self, make_chat):
        fake = FakeTelethon()
        chat = make_chat(fake)

        async def drop(peer, text):
            raise ConnectionError("reset by peer")

        fake.send_message = drop
        with pytest.raises(TransientExternalError):
            chat.dispatch("prompt")

    def test_slow_call_times_out(self, make_chat):
        fake = FakeTelethon()
        chat = make_chat(fake, call_timeout_s=0.05)

        async def hang(peer, limit=None, ids=None):
            await asyncio.sleep(5)

        fake.get_messages = hang
        with pytest.raises(TransientExternalError):
            chat.list_recent(PEER, 10)

    def test_connects_once_and_disconnects_on_close(self):
        fake = FakeTelethon()
        calls = []

        async def connect():
            calls.append(1)
            return fake

        chat = TelegramGenerationChannel(PEER, connect)
        chat.dispatch("one")
        chat.dispatch("two")
        chat.close()

        assert len(calls) == 1
        assert fake.disconnected


class TestFromEnv:
    def test_missing_credentials(self):
        with patch("videogen.clients.telegram_chat.TELEGRAM_API_ID", 0):
            with pytest.raises(ConfigError):
                TelegramGenerationChannel.from_env()

    def test_missing_session(self):
        with patch("videogen.clients.telegram_chat.TELEGRAM_API_ID", 12345), patch(
            "videogen.clients.telegram_chat.TELEGRAM_API_HASH", "hash"
        ), patch("videogen.clients.telegram_chat.TELEGRAM_STRING_SESSION", None):
            with pytest.raises(ConfigError) as exc_info:
                TelegramGenerationChannel.from_env()
        assert "TELEGRAM_STRING_SESSION" in str(exc_info.value)
