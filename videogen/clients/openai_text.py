# videogen/clients/openai_text.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from videogen.clients.base import ChannelBrief, TextGenerator
from videogen.clients.ideas import build_messages
from videogen.conf import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, OPENAI_TIMEOUT_S
from videogen.errors import ConfigError, TransientExternalError

logger = logging.getLogger(__name__)


class OpenAITextGenerator(TextGenerator):
    """
    Idea generator backed by an OpenAI-compatible chat completions endpoint.

    Returns the raw message content; parsing happens in ``parse_idea_payload``
    so alternative generators can share it.
    """

    def __init__(
        self,
        api_key: str,
        model: str = OPENAI_MODEL,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = OPENAI_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is not set")
        self.model = model
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "OpenAITextGenerator":
        return cls(api_key=OPENAI_API_KEY or "")

    def generate(self, brief: ChannelBrief) -> Any:
        body = {
            "model": self.model,
            "messages": build_messages(brief),
            "temperature": 0.8,
            "max_tokens": 2000,
            "response_format": {"type": "json_object"},
        }
        logger.info("Requesting idea for channel %s (model=%s)", brief.name, self.model)

        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise TransientExternalError(f"Text generation timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransientExternalError(f"Text generation request failed: {e}") from e

        if response.status_code in (401, 403):
            raise ConfigError(f"Text generation rejected the API key ({response.status_code})")
        if response.status_code == 429:
            raise TransientExternalError("Text generation rate limit exceeded (429)")
        if response.status_code >= 400:
            raise TransientExternalError(
                f"Text generation failed with HTTP {response.status_code}: {response.text[:200]}"
            )

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransientExternalError("Text generation returned no message content") from e
        if not content:
            raise TransientExternalError("Text generation returned an empty response")

        logger.debug("Idea response received (%d chars)", len(content))
        return content

    def close(self) -> None:
        self._client.close()
