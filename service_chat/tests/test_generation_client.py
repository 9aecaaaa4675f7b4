"""
Unit tests for the generation service client.
"""

import json

import pytest
import httpx

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_chat.app.adapters.generation_client import GenerationClient
from shared.errors import UpstreamServiceError
from shared.test_helpers import FakeClock

API_URL = "https://generation.example.test/v1/chat-messages"


def make_client(handler, **kwargs) -> GenerationClient:
    transport = httpx.MockTransport(handler)
    return GenerationClient(
        API_URL,
        "service-key",
        client=httpx.AsyncClient(transport=transport),
        **kwargs,
    )


class TestGenerationClient:
    """Test cases for GenerationClient."""

    @pytest.mark.asyncio
    async def test_generate_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(
                200,
                json={"answer": "hi", "conversation_id": "c1", "metadata": {"usage": {"total_tokens": 7}}},
            )

        client = make_client(handler)
        result = await client.generate("u1", "hello")

        assert result.answer == "hi"
        assert result.payload["conversation_id"] == "c1"
        assert result.metadata == {"usage": {"total_tokens": 7}}

        request = captured["request"]
        assert request.method == "POST"
        assert str(request.url) == API_URL
        assert request.headers["Authorization"] == "Bearer service-key"
        body = json.loads(request.content)
        assert body["query"] == "hello"
        assert body["user"] == "u1"
        assert body["response_mode"] == "blocking"

    @pytest.mark.asyncio
    async def test_caller_credential_is_not_forwarded(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"answer": "ok"})

        await make_client(handler).generate("u1", "hello")

        assert captured["auth"] == "Bearer service-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 429, 500, 503])
    async def test_non_success_status_raises(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code, json={"message": "boom"}))

        with pytest.raises(UpstreamServiceError) as exc_info:
            await client.generate("u1", "hello")

        assert exc_info.value.details["status_code"] == status_code
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamServiceError) as exc_info:
            await make_client(handler).generate("u1", "hello")

        assert exc_info.value.details == {"error": "timeout"}

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamServiceError):
            await make_client(handler).generate("u1", "hello")

    @pytest.mark.asyncio
    async def test_unparsable_body_raises(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"result": "hi"}, {"answer": None}, ["hi"]])
    async def test_missing_answer_raises(self, payload):
        client = make_client(lambda request: httpx.Response(200, json=payload))

        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502)

        with pytest.raises(UpstreamServiceError):
            await make_client(handler).generate("u1", "hello")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        client = make_client(handler, failure_threshold=2, recovery_timeout=300.0)

        for _ in range(2):
            with pytest.raises(UpstreamServiceError):
                await client.generate("u1", "hello")

        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")

        assert len(calls) == 2
        assert client.get_state()["state"] == "open"

    @pytest.mark.asyncio
    async def test_circuit_closes_after_successful_trial_call(self):
        clock = FakeClock()
        upstream = {"status": 500}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(upstream["status"], json={"answer": "hi"})

        client = make_client(handler, failure_threshold=2, recovery_timeout=30.0, clock=clock)
        for _ in range(2):
            with pytest.raises(UpstreamServiceError):
                await client.generate("u1", "hello")
        assert client.get_state()["state"] == "open"

        upstream["status"] = 200
        clock.advance(30)
        result = await client.generate("u1", "hello")

        assert result.answer == "hi"
        state = client.get_state()
        assert state["state"] == "closed"
        assert state["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_circuit_reopens_when_trial_call_fails(self):
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502)

        client = make_client(handler, failure_threshold=2, recovery_timeout=30.0, clock=clock)
        for _ in range(2):
            with pytest.raises(UpstreamServiceError):
                await client.generate("u1", "hello")

        clock.advance(29)
        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")
        assert len(calls) == 2

        clock.advance(1)
        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")
        assert len(calls) == 3
        assert client.get_state()["state"] == "open"

        # A single failed trial reopens the circuit for a fresh recovery period
        clock.advance(29)
        with pytest.raises(UpstreamServiceError):
            await client.generate("u1", "hello")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_close(self):
        client = make_client(lambda request: httpx.Response(200, json={"answer": "hi"}))

        await client.close()

        assert client._client.is_closed
