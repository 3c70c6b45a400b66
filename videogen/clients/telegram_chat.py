# videogen/clients/telegram_chat.py
"""
Generation chat over a Telegram user account (Telethon).

The worker is a bot, and bots cannot talk to each other, so the service logs
in as a regular user with a saved string session. Telethon is asyncio-based
while the pipeline runs on plain threads: the client lives on a private
event loop in a daemon thread and every call is submitted to it.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, List, Optional

from telethon import TelegramClient
from telethon.errors import FloodWaitError, RPCError
from telethon.sessions import StringSession

from videogen.clients.base import Attachment, GenerationChannel, InboundMessage
from videogen.conf import (
    GENERATION_PEER,
    TELEGRAM_API_HASH,
    TELEGRAM_API_ID,
    TELEGRAM_CALL_TIMEOUT_S,
    TELEGRAM_STRING_SESSION,
)
from videogen.errors import ConfigError, TransientExternalError

logger = logging.getLogger(__name__)

OWN_SENDER = "me"

Connector = Callable[[], Awaitable[Any]]


def to_inbound(message: Any, peer: str) -> InboundMessage:
    """Map a Telethon message from the worker's private chat."""
    attachments: List[Attachment] = []
    file = getattr(message, "file", None)
    if getattr(message, "video", None) is not None:
        kind = "video"
    elif getattr(message, "photo", None) is not None:
        kind = "photo"
    elif getattr(message, "document", None) is not None:
        kind = "document"
    else:
        kind = None
    if kind:
        attachments.append(
            Attachment(
                kind=kind,
                mime_type=getattr(file, "mime_type", None),
                file_name=getattr(file, "name", None),
                size=getattr(file, "size", None),
            )
        )

    return InboundMessage(
        id=message.id,
        # In a private chat everything not sent by us comes from the worker
        sender_id=OWN_SENDER if message.out else peer,
        attachments=attachments,
        back_reference=getattr(message, "reply_to_msg_id", None),
        timestamp=message.date,
        text=getattr(message, "message", None) or None,
    )


class TelegramGenerationChannel(GenerationChannel):
    """
    ``GenerationChannel`` talking to the worker bot from a user account.

    ``connect`` is a coroutine function returning a connected, authorized
    client; it runs on the private loop the first time the chat is used.
    """

    def __init__(self, peer: str, connect: Connector, call_timeout_s: float = TELEGRAM_CALL_TIMEOUT_S):
        self._peer = peer
        self._connect = connect
        self._call_timeout_s = call_timeout_s
        self._client: Any = None
        self._client_lock = threading.Lock()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="telegram-loop", daemon=True)
        self._thread.start()

    @classmethod
    def from_env(cls) -> "TelegramGenerationChannel":
        """
        Build the chat from TELEGRAM_API_ID, TELEGRAM_API_HASH and TELEGRAM_STRING_SESSION.

        Raises:
            ConfigError: If any of them is missing
        """
        if not TELEGRAM_API_ID or not TELEGRAM_API_HASH:
            raise ConfigError("TELEGRAM_API_ID and TELEGRAM_API_HASH must be set")
        if not TELEGRAM_STRING_SESSION:
            raise ConfigError("TELEGRAM_STRING_SESSION is not set; log in once and save the session string")

        api_id, api_hash, session = TELEGRAM_API_ID, TELEGRAM_API_HASH, TELEGRAM_STRING_SESSION

        async def connect() -> TelegramClient:
            client = TelegramClient(StringSession(session), api_id, api_hash, connection_retries=5)
            await client.connect()
            if not await client.is_user_authorized():
                await client.disconnect()
                raise ConfigError("Telegram session is not authorized; refresh TELEGRAM_STRING_SESSION")
            logger.info("Telegram client connected (peer=%s)", GENERATION_PEER)
            return client

        return cls(GENERATION_PEER, connect)

    @property
    def peer(self) -> str:
        return self._peer

    def _submit(self, coro: Awaitable[Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)  # type: ignore[arg-type]
        try:
            return future.result(timeout=self._call_timeout_s)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise TransientExternalError(f"Telegram call timed out after {self._call_timeout_s}s") from e
        except FloodWaitError as e:
            raise TransientExternalError(f"Telegram flood wait of {e.seconds}s") from e
        except RPCError as e:
            raise TransientExternalError(f"Telegram request failed: {e}") from e
        except (ConnectionError, OSError) as e:
            raise TransientExternalError(f"Telegram connection failed: {e}") from e

    def _client_or_connect(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = self._submit(self._connect())
            return self._client

    def dispatch(self, text: str) -> int:
        client = self._client_or_connect()
        message = self._submit(client.send_message(self._peer, text))
        logger.info("Request sent to %s → message %s", self._peer, message.id)
        return message.id

    def list_recent(self, peer: str, limit: int) -> List[InboundMessage]:
        client = self._client_or_connect()
        messages = self._submit(client.get_messages(peer, limit=limit))
        return [to_inbound(m, peer) for m in messages]

    def download(self, message_id: int) -> bytes:
        client = self._client_or_connect()
        message = self._submit(client.get_messages(self._peer, ids=message_id))
        if message is None:
            logger.warning("Message %s is gone from %s", message_id, self._peer)
            return b""
        data: Optional[bytes] = self._submit(client.download_media(message, file=bytes))
        return data or b""

    def close(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                self._submit(client.disconnect())
            except TransientExternalError as e:
                logger.warning("Telegram disconnect failed: %s", e)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)
