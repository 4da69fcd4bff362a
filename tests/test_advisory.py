"""Tests for the health-advice collaborator."""

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from medipod.config import AdvisoryConfig
from medipod.tools.advisory import AdviceResult, AdvisoryGateway, HttpAdvisoryGateway

CONFIG = replace(
    AdvisoryConfig(),
    api_key="test-key",
    base_url="https://llm.example.test/v1/",
    model="test-model",
    temperature=0.2,
    max_tokens=300,
    timeout_sec=5.0,
)


def completion(content) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def gateway_with(handler, config: AdvisoryConfig = CONFIG) -> HttpAdvisoryGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpAdvisoryGateway(config, client=client)


class TestHttpAdvisoryGateway:
    @pytest.mark.asyncio
    async def test_returns_stripped_answer(self):
        gateway = gateway_with(
            lambda request: httpx.Response(200, json=completion("  Drink water.  \n"))
        )
        result = await gateway.advise("I feel dizzy after standing up quickly")
        assert result == AdviceResult(available=True, text="Drink water.")

    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=completion("ok"))

        await gateway_with(handler).advise("my back hurts", "visits: 2")
        request = seen[0]
        assert str(request.url) == "https://llm.example.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert payload["temperature"] == 0.2
        assert payload["max_tokens"] == 300
        assert payload["messages"][0]["role"] == "system"
        assert "visits: 2" in payload["messages"][1]["content"]
        assert payload["messages"][-1] == {"role": "user", "content": "my back hurts"}

    @pytest.mark.asyncio
    async def test_server_error(self):
        result = await gateway_with(lambda request: httpx.Response(500)).advise("question")
        assert result == AdviceResult.unavailable("http_error")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        result = await gateway_with(handler).advise("question")
        assert result.reason == "http_error"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        gateway = gateway_with(lambda request: httpx.Response(200, content=b"not json"))
        assert (await gateway.advise("question")).reason == "bad_response"

    @pytest.mark.asyncio
    async def test_missing_choices(self):
        gateway = gateway_with(lambda request: httpx.Response(200, json={"choices": []}))
        assert (await gateway.advise("question")).reason == "bad_response"

    @pytest.mark.asyncio
    async def test_empty_content(self):
        gateway = gateway_with(lambda request: httpx.Response(200, json=completion("   ")))
        result = await gateway.advise("question")
        assert not result.available
        assert result.reason == "empty"

    @pytest.mark.asyncio
    async def test_null_content(self):
        gateway = gateway_with(lambda request: httpx.Response(200, json=completion(None)))
        assert (await gateway.advise("question")).reason == "empty"

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json=completion("too late"))

        gateway = gateway_with(slow, replace(CONFIG, timeout_sec=0.01))
        assert (await gateway.advise("question")).reason == "timeout"

    @pytest.mark.asyncio
    async def test_not_configured_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        gateway = gateway_with(handler, replace(CONFIG, api_key=None))
        assert (await gateway.advise("question")).reason == "not_configured"


class TestNullGateway:
    @pytest.mark.asyncio
    async def test_never_available(self):
        result = await AdvisoryGateway().advise("anything at all")
        assert result == AdviceResult(available=False, reason="disabled")
