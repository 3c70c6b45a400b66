# videogen/clients/registry.py
from __future__ import annotations

import importlib
import logging
from typing import Any, Callable, Dict, Optional

from videogen.clients.base import FileStorage, GenerationChannel, PushNotifier, TextGenerator
from videogen.conf import CLIENT_FACTORY, TELEGRAM_API_ID
from videogen.errors import ConfigError

logger = logging.getLogger(__name__)


class ClientRegistry:
    """
    Process-wide holder for the external collaborators.

    The server wires concrete clients at startup through
    ``configure_from_env``; tests install fakes. Asking for a client nobody
    configured raises ``ConfigError``.
    """

    _generation: Optional[GenerationChannel] = None
    _text: Optional[TextGenerator] = None
    _storage: Optional[FileStorage] = None
    _push: Optional[PushNotifier] = None

    @classmethod
    def configure(
        cls,
        generation: Optional[GenerationChannel] = None,
        text: Optional[TextGenerator] = None,
        storage: Optional[FileStorage] = None,
        push: Optional[PushNotifier] = None,
    ) -> None:
        if generation is not None:
            cls._generation = generation
        if text is not None:
            cls._text = text
        if storage is not None:
            cls._storage = storage
        if push is not None:
            cls._push = push
        logger.debug(
            "Clients configured → generation=%s text=%s storage=%s push=%s",
            type(cls._generation).__name__ if cls._generation else None,
            type(cls._text).__name__ if cls._text else None,
            type(cls._storage).__name__ if cls._storage else None,
            type(cls._push).__name__ if cls._push else None,
        )

    @classmethod
    def generation(cls) -> GenerationChannel:
        if cls._generation is None:
            raise ConfigError("Generation chat client is not configured")
        return cls._generation

    @classmethod
    def text(cls) -> TextGenerator:
        if cls._text is None:
            from videogen.clients.openai_text import OpenAITextGenerator

            # Built lazily so a missing key only fails when ideas are needed.
            cls._text = OpenAITextGenerator.from_env()
        return cls._text

    @classmethod
    def storage(cls) -> FileStorage:
        if cls._storage is None:
            raise ConfigError("File storage client is not configured")
        return cls._storage

    @classmethod
    def push(cls) -> Optional[PushNotifier]:
        """Push delivery is optional; None means notifications are skipped."""
        return cls._push

    @classmethod
    def close_all(cls) -> None:
        """Release connections held by configured clients, then forget them."""
        for client in (cls._generation, cls._text, cls._storage, cls._push):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning("Closing %s failed: %s", type(client).__name__, e)
        cls.clear_all()

    @classmethod
    def clear_all(cls) -> None:
        cls._generation = None
        cls._text = None
        cls._storage = None
        cls._push = None


CLIENT_ROLES = ("generation", "text", "storage", "push")


def load_factory(path: str) -> Callable[[], Dict[str, Any]]:
    """Resolve ``package.module:callable``."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"CLIENT_FACTORY must look like 'package.module:callable', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import client factory module {module_name!r}: {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Client factory {path!r} is not callable")
    return factory


def configure_from_env(factory_path: Optional[str] = CLIENT_FACTORY) -> None:
    """
    Wire the clients configuration asks for.

    The Telegram generation chat is built when TELEGRAM_API_ID is set. The
    factory named by CLIENT_FACTORY then runs and may supply any of
    ``generation``, ``text``, ``storage`` and ``push``; its clients override the
    built-in ones. Text generation is left to the lazy OpenAI default.

    Raises:
        ConfigError: If a configured client cannot be built
    """
    if TELEGRAM_API_ID:
        from videogen.clients.telegram_chat import TelegramGenerationChannel

        ClientRegistry.configure(generation=TelegramGenerationChannel.from_env())
    else:
        logger.warning("TELEGRAM_API_ID is not set; jobs fail until a generation chat is configured")

    if factory_path:
        clients = load_factory(factory_path)()
        if not isinstance(clients, dict):
            raise ConfigError(f"Client factory {factory_path!r} must return a dict")
        unknown = set(clients) - set(CLIENT_ROLES)
        if unknown:
            raise ConfigError(f"Client factory {factory_path!r} returned unknown roles: {', '.join(sorted(unknown))}")
        ClientRegistry.configure(**clients)
        logger.info("Clients from %s → %s", factory_path, ", ".join(sorted(clients)) or "none")
