"""Tests for the listener delegation client."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from beepboop.config import DelegationConfig
from beepboop.delegation import DelegationClient
from beepboop.delegation.client import REQUEST_ID_HEADER, serialized_length
from beepboop.errors import ErrorCode


def enabled_config(**overrides) -> DelegationConfig:
    values = {"enabled": True, "base_url": "http://listener:7077/", "auth_token": "tok"}
    values.update(overrides)
    return DelegationConfig(**values)


class TestTimeouts:
    """Test the size-scaled timeout."""

    def test_scales_with_body(self) -> None:
        """The timeout grows with the serialized body length."""
        client = DelegationClient(
            DelegationConfig(timeout_base_ms=1000, timeout_per_char_ms=5, timeout_max_ms=60000)
        )
        body = {"a": "12"}
        assert serialized_length(body) == 10
        assert client.compute_timeout_ms(body) == 1050

    def test_capped(self) -> None:
        """Large bodies are capped at the maximum timeout."""
        client = DelegationClient(
            DelegationConfig(timeout_base_ms=1000, timeout_per_char_ms=5, timeout_max_ms=60000)
        )
        assert client.compute_timeout_ms({"content": "x" * 20000}) == 60000

    def test_empty_body(self) -> None:
        """An empty body adds the two bracket characters."""
        client = DelegationClient(DelegationConfig(timeout_base_ms=1000, timeout_per_char_ms=5))
        assert client.compute_timeout_ms({}) == 1010


class TestPost:
    """Test request shape and result mapping."""

    @pytest.mark.asyncio
    async def test_disabled_returns_unavailable(self) -> None:
        """Disabled delegation returns 503 without any request."""
        client = DelegationClient(DelegationConfig(enabled=False))
        result = await client.post("/mcp/check_status", {"directory": "/srv"})
        assert result.ok is False
        assert result.status == 503
        assert result.code is ErrorCode.DELEGATION_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        """Requests carry auth, request id and the JSON body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"text": "WORK ALLOWED"})

        client = DelegationClient(enabled_config(), httpx.MockTransport(handler))
        result = await client.post("/mcp/check_status", {"directory": "/srv"})

        assert result.ok is True
        assert result.text == "WORK ALLOWED"

        request = seen[0]
        assert str(request.url) == "http://listener:7077/mcp/check_status"
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body["directory"] == "/srv"
        assert body["requestId"] == request.headers[REQUEST_ID_HEADER]
        assert result.request_id == body["requestId"]

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self) -> None:
        """No Authorization header is sent without a token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client = DelegationClient(enabled_config(auth_token=None), httpx.MockTransport(handler))
        await client.post("/health")
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_remote_error_message(self) -> None:
        """The listener's error text is passed through."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Error: directory missing"})

        client = DelegationClient(enabled_config(), httpx.MockTransport(handler))
        result = await client.post("/mcp/check_status", {})
        assert result.ok is False
        assert result.status == 400
        assert result.error == "Error: directory missing"
        assert result.code is ErrorCode.DELEGATION_REMOTE_ERROR

    @pytest.mark.asyncio
    async def test_non_json_error_uses_reason(self) -> None:
        """A non-JSON error body falls back to the HTTP reason."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>bad gateway</html>")

        client = DelegationClient(enabled_config(), httpx.MockTransport(handler))
        result = await client.post("/mcp/check_status", {})
        assert result.status == 502
        assert result.error == "Bad Gateway"
        assert result.data is None

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        """Connection failures map to status 500."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = DelegationClient(enabled_config(), httpx.MockTransport(handler))
        result = await client.post("/mcp/check_status", {})
        assert result.ok is False
        assert result.status == 500
        assert result.code is ErrorCode.DELEGATION_REMOTE_ERROR
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """A slow listener maps to status 408."""
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        client = DelegationClient(enabled_config(), httpx.MockTransport(handler))
        result = await client.post("/mcp/check_status", {}, timeout_ms=50)
        assert result.ok is False
        assert result.status == 408
        assert result.code is ErrorCode.DELEGATION_TIMEOUT
        assert client.in_flight == 0


class TestConcurrency:
    """Test the in-flight bound."""

    @pytest.mark.asyncio
    async def test_excess_calls_wait(self) -> None:
        """Calls beyond the bound wait for a free slot."""
        release = asyncio.Event()
        active = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return httpx.Response(200, json={"text": "ok"})

        client = DelegationClient(
            enabled_config(max_concurrent_requests=2), httpx.MockTransport(handler)
        )
        tasks = [asyncio.create_task(client.post("/mcp/check_status", {})) for _ in range(3)]

        for _ in range(50):
            await asyncio.sleep(0.01)
            if client.in_flight == 2 and client.waiting == 1:
                break
        assert client.in_flight == 2
        assert client.waiting == 1

        release.set()
        results = await asyncio.gather(*tasks)

        assert all(r.ok for r in results)
        assert peak == 2
        assert client.in_flight == 0
        assert client.waiting == 0

    @pytest.mark.asyncio
    async def test_slots_released_after_failures(self) -> None:
        """Failed calls give their slots back."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        client = DelegationClient(
            enabled_config(max_concurrent_requests=1), httpx.MockTransport(handler)
        )
        for _ in range(3):
            result = await client.post("/health")
            assert result.status == 500
        assert client.in_flight == 0
