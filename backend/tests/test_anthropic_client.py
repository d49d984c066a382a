"""Unit tests for the Anthropic Messages API client."""

import asyncio
import json

import httpx
import pytest

from sogood.errors import ConfigurationError
from sogood.services.anthropic_client import AnthropicClient, extract_text
from sogood_models import ChatTurn

TURNS = [ChatTurn(role="user", content="hello")]


def client_for(settings, handler) -> AnthropicClient:
    return AnthropicClient(settings, transport=httpx.MockTransport(handler))


class TestExtractText:
    """Test extract_text."""

    def test_joins_text_blocks(self):
        content = [
            {"type": "text", "text": "Hello "},
            {"type": "tool_use", "id": "t"},
            {"type": "text", "text": "world"},
        ]
        assert extract_text(content) == "Hello world"

    def test_non_list(self):
        assert extract_text(None) == ""
        assert extract_text("text") == ""


class TestComplete:
    """Test AnthropicClient.complete."""

    @pytest.mark.asyncio
    async def test_success_and_request_shape(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [{"type": "text", "text": "Hi there"}]})

        result = await client_for(settings, handler).complete("SYSTEM", TURNS)

        assert result.ok
        assert result.text == "Hi there"
        assert seen["url"] == "https://api.anthropic.com/v1/messages"
        assert seen["headers"]["x-api-key"] == "sk-ant-test"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["system"] == "SYSTEM"
        assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]
        assert seen["body"]["max_tokens"] == 4096
        assert seen["body"]["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_http_error(self, settings):
        def handler(request):
            return httpx.Response(400, text="credit balance is too low" + "x" * 5000)

        result = await client_for(settings, handler).complete("s", TURNS)
        assert not result.ok
        assert result.status_code == 400
        assert result.error.startswith("HTTP 400: credit balance is too low")
        assert len(result.error) == len("HTTP 400: ") + 2000

    @pytest.mark.asyncio
    async def test_malformed_json(self, settings):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        result = await client_for(settings, handler).complete("s", TURNS)
        assert result.error.startswith("Malformed model response")

    @pytest.mark.asyncio
    async def test_invalid_utf8_body(self, settings):
        """A 2xx body that is not valid UTF-8 is a provider error."""

        def handler(request):
            return httpx.Response(200, content=b'{"content": "\xc3\x28"}')

        result = await client_for(settings, handler).complete("s", TURNS)
        assert not result.ok
        assert result.error.startswith("Malformed model response")
        assert result.status_code == 200

    @pytest.mark.asyncio
    async def test_empty_text(self, settings):
        def handler(request):
            return httpx.Response(200, json={"content": [{"type": "text", "text": "  "}]})

        result = await client_for(settings, handler).complete("s", TURNS)
        assert result.error == "Empty model response"

    @pytest.mark.asyncio
    async def test_network_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await client_for(settings, handler).complete("s", TURNS)
        assert result.error == "Request failed: connection refused"

    @pytest.mark.asyncio
    async def test_timeout(self, settings):
        settings.anthropic_timeout_ms = 50

        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"content": []})

        result = await client_for(settings, handler).complete("s", TURNS)
        assert result.error == "Anthropic request timed out after 50ms"

    @pytest.mark.asyncio
    async def test_missing_key(self, settings):
        settings.anthropic_api_key = ""
        with pytest.raises(ConfigurationError):
            await client_for(settings, lambda r: httpx.Response(200)).complete("s", TURNS)
