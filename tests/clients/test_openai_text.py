# tests/clients/test_openai_text.py
import json

import httpx
import pytest

from videogen.clients.base import ChannelBrief
from videogen.clients.openai_text import OpenAITextGenerator
from videogen.clients.registry import ClientRegistry
from videogen.errors import ConfigError, TransientExternalError

BRIEF = ChannelBrief(name="Space", description="space facts")


def _generator(handler) -> OpenAITextGenerator:
    return OpenAITextGenerator(
        api_key="sk-test",
        model="test-model",
        base_url="https://llm.test/v1",
        transport=httpx.MockTransport(handler),
    )


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestOpenAITextGenerator:
    """Test the chat completions client against a mock transport."""

    def test_generate_returns_content(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return _completion('{"idea_title": "Moon"}')

        content = _generator(handler).generate(BRIEF)

        assert content == '{"idea_title": "Moon"}'
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["messages"][0]["role"] == "system"

    def test_missing_key_is_config_error(self):
        with pytest.raises(ConfigError):
            OpenAITextGenerator(api_key="")

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_rejected_key_is_config_error(self, status_code):
        with pytest.raises(ConfigError):
            _generator(lambda request: httpx.Response(status_code)).generate(BRIEF)

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    def test_server_errors_are_transient(self, status_code):
        with pytest.raises(TransientExternalError):
            _generator(lambda request: httpx.Response(status_code, text="busy")).generate(BRIEF)

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(TransientExternalError, match="timed out"):
            _generator(handler).generate(BRIEF)

    def test_empty_content_is_transient(self):
        with pytest.raises(TransientExternalError):
            _generator(lambda request: _completion("")).generate(BRIEF)

    def test_malformed_body_is_transient(self):
        with pytest.raises(TransientExternalError):
            _generator(lambda request: httpx.Response(200, json={"choices": []})).generate(BRIEF)


class TestClientRegistry:
    """Test ClientRegistry lookups."""

    def test_unconfigured_clients_raise(self):
        with pytest.raises(ConfigError):
            ClientRegistry.generation()
        with pytest.raises(ConfigError):
            ClientRegistry.storage()

    def test_push_is_optional(self):
        assert ClientRegistry.push() is None

    def test_text_without_key_raises(self, monkeypatch):
        monkeypatch.setattr("videogen.clients.openai_text.OPENAI_API_KEY", None)
        with pytest.raises(ConfigError):
            ClientRegistry.text()

    def test_configured_client_is_returned(self, generation):
        assert ClientRegistry.generation() is generation
