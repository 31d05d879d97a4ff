"""Tests for the shared listener HTTP routes."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from beepboop import __version__
from beepboop.config import Config, DelegationConfig
from beepboop.conversations import InboxStore, Platform
from beepboop.coordination import DirectoryCoordinator
from beepboop.delegation import DelegationClient
from beepboop.listener import create_app
from beepboop.tools import CoordinationTools

TOKEN = "listener-secret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def local_tools(
    config: Config, coordinator: DirectoryCoordinator, inbox: InboxStore, fake_platform
) -> CoordinationTools:
    return CoordinationTools(
        config,
        coordinator=coordinator,
        inbox=inbox,
        platforms={Platform.DISCORD: fake_platform()},
    )


@pytest.fixture
def app(local_tools: CoordinationTools):
    return create_app(local_tools, auth_token=TOKEN)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def capture_body(**overrides) -> dict:
    body = {
        "platform": "discord",
        "text": "Is the deploy done?",
        "authoredBy": {"id": "U1", "username": "alice"},
        "context": {"channelId": "C1", "messageId": "M1"},
    }
    body.update(overrides)
    return body


class TestHealth:
    """Test the unauthenticated health route."""

    def test_health(self, client: TestClient) -> None:
        """Health reports version and configured platforms."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "version": __version__,
            "platforms": ["discord"],
        }

    def test_health_post(self, client: TestClient) -> None:
        """Health also answers POST."""
        assert client.post("/health", json={}).status_code == 200


class TestAuth:
    """Test bearer token enforcement."""

    def test_missing_token(self, client: TestClient) -> None:
        """A missing bearer token is rejected."""
        response = client.get("/messages")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_token(self, client: TestClient) -> None:
        """A wrong bearer token is rejected."""
        response = client.get("/messages", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_no_token_configured(self, local_tools: CoordinationTools) -> None:
        """Without a configured token every request is accepted."""
        client = TestClient(create_app(local_tools))
        assert client.get("/messages").status_code == 200


class TestMessages:
    """Test the captured message routes."""

    def test_capture_read_ack(self, client: TestClient) -> None:
        """A captured message can be listed, read and acknowledged once."""
        response = client.post("/messages", json=capture_body(), headers=AUTH)
        assert response.status_code == 201
        record_id = response.json()["id"]

        assert client.get("/messages", headers=AUTH).json() == {"ids": [record_id]}

        record = client.get(f"/messages/{record_id}", headers=AUTH).json()
        assert record["text"] == "Is the deploy done?"
        assert record["authoredBy"] == {"id": "U1", "username": "alice"}
        assert record["context"] == {"channelId": "C1", "messageId": "M1"}

        ack = client.post(f"/messages/{record_id}/ack", headers=AUTH)
        assert ack.status_code == 200
        assert ack.json() == {"ok": True}

        again = client.post(f"/messages/{record_id}/ack", headers=AUTH)
        assert again.status_code == 400
        assert again.json() == {"ok": False}
        assert client.get("/messages", headers=AUTH).json() == {"ids": []}

    def test_capture_with_id(self, client: TestClient) -> None:
        """A caller-supplied id is kept."""
        response = client.post("/messages", json=capture_body(id="fixed-1"), headers=AUTH)
        assert response.json() == {"id": "fixed-1"}

    def test_capture_invalid_platform(self, client: TestClient) -> None:
        """An unknown platform is a 400."""
        response = client.post("/messages", json=capture_body(platform="irc"), headers=AUTH)
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid request")

    def test_not_found(self, client: TestClient) -> None:
        """Reading an unknown id is a 404."""
        response = client.get("/messages/missing", headers=AUTH)
        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    def test_invalid_id(self, client: TestClient) -> None:
        """An id with bad characters is a 400."""
        response = client.get("/messages/bad id", headers=AUTH)
        assert response.status_code == 400
        assert "Invalid message id" in response.json()["error"]

    def test_inbox_runs_in_worker_thread(
        self, client: TestClient, local_tools: CoordinationTools, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Inbox reads happen outside the event loop thread."""
        calls: list[bool] = []
        real_list = local_tools.inbox.list

        def list_ids() -> list[str]:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                calls.append(True)
            else:
                calls.append(False)
            return real_list()

        monkeypatch.setattr(local_tools.inbox, "list", list_ids)

        assert client.get("/messages", headers=AUTH).json() == {"ids": []}
        assert calls == [True]


class TestToolRoutes:
    """Test the delegated tool routes."""

    def test_check_status(self, client: TestClient, work_dir: str) -> None:
        """check_status returns text and status metadata."""
        response = client.post(
            "/mcp/check_status", json={"directory": work_dir, "maxAgeHours": 24}, headers=AUTH
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["text"].startswith("NO COORDINATION")
        assert payload["meta"]["status"]["state"] == "NO_COORDINATION"

    def test_tool_error_is_400(self, client: TestClient, tmp_path) -> None:
        """A tool error maps to 400 with the error code."""
        missing = str(tmp_path / "missing")
        response = client.post("/mcp/check_status", json={"directory": missing}, headers=AUTH)
        assert response.status_code == 400
        payload = response.json()
        assert payload["error"] == f"Error: Directory not found: {missing} (DIRECTORY_NOT_FOUND)"
        assert payload["meta"]["code"] == "DIRECTORY_NOT_FOUND"

    def test_missing_field(self, client: TestClient) -> None:
        """A missing required field is a 400 naming it."""
        response = client.post("/mcp/check_status", json={}, headers=AUTH)
        assert response.status_code == 400
        assert "directory" in response.json()["error"]

    def test_update_user_unknown_message(self, client: TestClient) -> None:
        """update_user for an unknown record is a 400."""
        response = client.post(
            "/mcp/update_user",
            json={"messageId": "nope", "updateContent": "hi"},
            headers=AUTH,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Error: Message nope not found"

    def test_initiate_conversation_times_out(self, client: TestClient) -> None:
        """An unanswered conversation reports a timeout."""
        response = client.post(
            "/mcp/initiate_conversation",
            json={"platform": "discord", "content": "Anyone?", "agentId": "ops-1"},
            headers=AUTH,
        )
        assert response.status_code == 200
        payload = response.json()
        assert "no user response received" in payload["text"]
        assert payload["meta"]["timedOut"] is True


class TestRequestIds:
    """Test X-Request-Id propagation."""

    def test_header_echoed(self, client: TestClient) -> None:
        """X-Request-Id from the request is echoed."""
        response = client.get("/health", headers={"X-Request-Id": "req-1"})
        assert response.headers["X-Request-Id"] == "req-1"

    def test_legacy_header_accepted(self, client: TestClient) -> None:
        """The legacy request id header is accepted."""
        response = client.get("/health", headers={"X-Beep-Boop-Request-Id": "req-2"})
        assert response.headers["X-Request-Id"] == "req-2"

    def test_body_request_id(self, client: TestClient, work_dir: str) -> None:
        """requestId in the body becomes the response header."""
        response = client.post(
            "/mcp/check_status",
            json={"directory": work_dir, "requestId": "req-3"},
            headers=AUTH,
        )
        assert response.headers["X-Request-Id"] == "req-3"

    def test_generated(self, client: TestClient) -> None:
        """A request id is generated when none is sent."""
        assert len(client.get("/health").headers["X-Request-Id"]) == 36


class TestDelegationRoundTrip:
    """A delegating client talking to the listener app in-process."""

    @pytest.mark.asyncio
    async def test_check_status_through_listener(
        self, app, config: Config, work_dir: str, local_tools: CoordinationTools
    ) -> None:
        """A delegating client gets the listener's status result."""
        await local_tools.update_boop(work_dir, "agent-a")

        delegation = DelegationClient(
            DelegationConfig(enabled=True, base_url="http://listener", auth_token=TOKEN),
            httpx.ASGITransport(app=app),
        )
        remote = CoordinationTools(config, delegation=delegation, platforms={})

        result = await remote.check_status(work_dir)
        assert result.is_error is False
        assert result.text.startswith("WORK IN PROGRESS")
        assert result.meta["status"]["held"]["agentId"] == "agent-a"

    @pytest.mark.asyncio
    async def test_wrong_token_through_listener(self, app, config: Config, work_dir: str) -> None:
        """A bad token surfaces as a listener error result."""
        delegation = DelegationClient(
            DelegationConfig(enabled=True, base_url="http://listener", auth_token="wrong"),
            httpx.ASGITransport(app=app),
        )
        remote = CoordinationTools(config, delegation=delegation, platforms={})

        result = await remote.check_status(work_dir)
        assert result.is_error is True
        assert result.text == "Error: Listener error (401): Unauthorized"
