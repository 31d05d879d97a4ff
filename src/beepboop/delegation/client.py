"""HTTP client that forwards tool calls to the shared listener.

Several coordination-tool processes can share one listener (and so one set of
chat-platform connections). Each call is bounded by a semaphore and given a
timeout that grows with the size of its JSON body.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from beepboop.config.schema import DelegationConfig
from beepboop.errors import ErrorCode
from beepboop.logging import get_logger

log = get_logger("delegation")

REQUEST_ID_HEADER = "X-Request-Id"

STATUS_TIMEOUT = 408
STATUS_TRANSPORT_ERROR = 500
STATUS_UNAVAILABLE = 503


@dataclass
class DelegationResult:
    """Outcome of one delegated call. Never raised, always returned."""

    ok: bool
    status: int
    data: Any = None
    error: str | None = None
    code: ErrorCode | None = None
    request_id: str | None = None

    @property
    def text(self) -> str | None:
        if isinstance(self.data, dict) and isinstance(self.data.get("text"), str):
            return self.data["text"]
        return None


def serialized_length(body: Any) -> int:
    """Length of `body` as compact JSON."""
    return len(json.dumps(body, separators=(",", ":"), default=str))


class DelegationClient:
    """Bounded-concurrency POST client for the listener's /mcp routes."""

    def __init__(
        self,
        config: DelegationConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or DelegationConfig()
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_requests))
        self.in_flight = 0
        self.waiting = 0

    @property
    def available(self) -> bool:
        return bool(self.config.enabled and self.config.base_url)

    def compute_timeout_ms(self, body: Any) -> int:
        """Per-request timeout scaled by payload size.

        min(max, base + len(json(body)) * per_char). A body that cannot be
        serialized gets the base timeout.

        Args:
            body: Request payload.

        Returns:
            Timeout in milliseconds.
        """
        cfg = self.config
        try:
            length = serialized_length(body)
        except (TypeError, ValueError):
            return cfg.timeout_base_ms
        return min(cfg.timeout_max_ms, cfg.timeout_base_ms + length * cfg.timeout_per_char_ms)

    def _headers(self, request_id: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", REQUEST_ID_HEADER: request_id}
        if self.config.auth_token:
            headers["Authorization"] = f"Bearer {self.config.auth_token}"
        return headers

    def _url(self, route: str) -> str:
        base = (self.config.base_url or "").rstrip("/")
        return f"{base}/{route.lstrip('/')}"

    async def post(
        self,
        route: str,
        body: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> DelegationResult:
        """POST `body` to `route` on the listener.

        Never raises for listener failures. Waits for a free slot when the
        concurrency limit is reached.

        Args:
            route: Listener path such as "/mcp/check_status".
            body: JSON payload; a copy is sent.
            timeout_ms: Override for the size-scaled timeout.

        Returns:
            A DelegationResult. Failures carry status 503 when delegation is
            disabled, 408 on timeout, 500 on transport errors, otherwise the
            remote status with its `error` message.
        """
        if not self.available:
            return DelegationResult(
                ok=False,
                status=STATUS_UNAVAILABLE,
                error="Listener not enabled",
                code=ErrorCode.DELEGATION_UNAVAILABLE,
            )

        body = dict(body or {})
        timeout_s = (timeout_ms if timeout_ms is not None else self.compute_timeout_ms(body)) / 1000

        self.waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.waiting -= 1

        self.in_flight += 1
        request_id = str(uuid.uuid4())
        try:
            return await self._send(route, body, request_id, timeout_s)
        finally:
            self.in_flight -= 1
            self._semaphore.release()

    async def _send(
        self, route: str, body: dict[str, Any], request_id: str, timeout_s: float
    ) -> DelegationResult:
        payload = json.dumps({**body, "requestId": request_id}, default=str)
        log.debug("POST %s (%s, timeout %.1fs)", route, request_id, timeout_s)
        try:
            async with asyncio.timeout(timeout_s):
                async with httpx.AsyncClient(
                    timeout=timeout_s, transport=self._transport
                ) as client:
                    response = await client.post(
                        self._url(route),
                        content=payload,
                        headers=self._headers(request_id),
                    )
        except (TimeoutError, httpx.TimeoutException):
            log.warning("Listener call %s timed out after %.1fs (%s)", route, timeout_s, request_id)
            return DelegationResult(
                ok=False,
                status=STATUS_TIMEOUT,
                error="Listener timed out",
                code=ErrorCode.DELEGATION_TIMEOUT,
                request_id=request_id,
            )
        except httpx.HTTPError as e:
            log.warning("Listener call %s failed: %s (%s)", route, e, request_id)
            return DelegationResult(
                ok=False,
                status=STATUS_TRANSPORT_ERROR,
                error=f"Listener error: {e}",
                code=ErrorCode.DELEGATION_REMOTE_ERROR,
                request_id=request_id,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_success:
            return DelegationResult(ok=True, status=response.status_code, data=data, request_id=request_id)

        error = data.get("error") if isinstance(data, dict) else None
        return DelegationResult(
            ok=False,
            status=response.status_code,
            data=data,
            error=error or response.reason_phrase,
            code=ErrorCode.DELEGATION_REMOTE_ERROR,
            request_id=request_id,
        )
