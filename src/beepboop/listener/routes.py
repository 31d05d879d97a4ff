"""FastAPI routes for the shared listener.

Two groups of routes:
- /messages: read and acknowledge captured conversation records, or capture one
- /mcp/*: delegated tool calls, answered with {text, meta?} or {error}
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from beepboop import __version__
from beepboop.conversations.inbox import is_valid_record_id
from beepboop.conversations.schema import (
    AuthoredBy,
    ConversationRecord,
    MessageContext,
    Platform,
)
from beepboop.delegation.client import REQUEST_ID_HEADER
from beepboop.logging import get_logger
from beepboop.tools import CoordinationTools, ToolResult

log = get_logger("listener")

LEGACY_REQUEST_ID_HEADER = "X-Beep-Boop-Request-Id"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CheckStatusBody(_CamelModel):
    directory: str
    max_age_hours: float | None = Field(default=None, ge=0)
    auto_clean_stale: bool = False
    new_agent_id: str | None = None
    new_work_description: str | None = None
    request_id: str | None = None


class UpdateUserBody(_CamelModel):
    message_id: str
    update_content: str
    request_id: str | None = None


class InitiateConversationBody(_CamelModel):
    platform: str
    content: str
    channel_id: str | None = None
    agent_id: str | None = None
    request_id: str | None = None


class AuthorBody(_CamelModel):
    id: str
    username: str | None = None


class ContextBody(_CamelModel):
    channel_id: str
    thread_ts: str | None = None
    guild_id: str | None = None
    message_id: str | None = None
    thread_id: str | None = None


class CaptureBody(_CamelModel):
    """An inbound platform message pushed by an external capture process."""

    platform: Platform
    text: str
    authored_by: AuthorBody
    context: ContextBody
    id: str | None = None
    raw: Any = None


def create_app(tools: CoordinationTools, auth_token: str | None = None) -> FastAPI:
    """Create the listener application around a local CoordinationTools."""
    app = FastAPI(
        title="beepboop listener",
        description="Shared coordination listener for beep/boop agents",
        version=__version__,
    )
    app.state.tools = tools
    app.state.auth_token = auth_token

    _register_middleware(app)
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = (
            request.headers.get(REQUEST_ID_HEADER)
            or request.headers.get(LEGACY_REQUEST_ID_HEADER)
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id or str(uuid.uuid4())
        return response


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse({"error": f"Invalid request: {problems}"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Listener error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": f"Internal error: {exc}"}, status_code=500)


def require_token(request: Request) -> None:
    """Bearer auth when the listener has a token configured."""
    token = request.app.state.auth_token
    if not token:
        return
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer ") or header[len("Bearer ") :] != token:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _tool_response(request: Request, result: ToolResult, body_request_id: str | None) -> JSONResponse:
    if not request.state.request_id and body_request_id:
        request.state.request_id = body_request_id
    if result.is_error:
        payload: dict[str, Any] = {"error": result.text}
        if result.meta:
            payload["meta"] = result.meta
        return JSONResponse(payload, status_code=400)
    return JSONResponse(result.to_dict())


def _record_id(record_id: str) -> str:
    if not is_valid_record_id(record_id):
        raise HTTPException(status_code=400, detail=f"Invalid message id: {record_id}")
    return record_id


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.api_route("/health", methods=["GET", "POST"])
    async def health(request: Request) -> dict[str, Any]:
        tools: CoordinationTools = request.app.state.tools
        return {
            "status": "ok",
            "version": __version__,
            "platforms": sorted(p.value for p in tools.platforms),
        }

    @app.get("/messages", dependencies=[Depends(require_token)])
    async def list_messages(request: Request) -> dict[str, Any]:
        tools: CoordinationTools = request.app.state.tools
        return {"ids": await asyncio.to_thread(tools.inbox.list)}

    @app.post("/messages", status_code=201, dependencies=[Depends(require_token)])
    async def capture_message(request: Request, body: CaptureBody) -> dict[str, Any]:
        tools: CoordinationTools = request.app.state.tools
        record = ConversationRecord(
            platform=body.platform,
            text=body.text,
            raw=body.raw,
            authored_by=AuthoredBy(body.authored_by.id, body.authored_by.username),
            context=MessageContext(**body.context.model_dump()),
        )
        if body.id:
            record.id = _record_id(body.id)
        await asyncio.to_thread(tools.inbox.put, record)
        log.info("Captured %s message %s", record.platform.value, record.id)
        return {"id": record.id}

    @app.get("/messages/{record_id}", dependencies=[Depends(require_token)])
    async def get_message(request: Request, record_id: str) -> dict[str, Any]:
        tools: CoordinationTools = request.app.state.tools
        record = await asyncio.to_thread(tools.inbox.read, _record_id(record_id))
        if record is None:
            raise HTTPException(status_code=404, detail="Not found")
        return record.to_dict()

    @app.post("/messages/{record_id}/ack", dependencies=[Depends(require_token)])
    async def ack_message(request: Request, record_id: str) -> JSONResponse:
        tools: CoordinationTools = request.app.state.tools
        ok = await asyncio.to_thread(tools.inbox.ack, _record_id(record_id))
        return JSONResponse({"ok": ok}, status_code=200 if ok else 400)

    @app.post("/mcp/check_status", dependencies=[Depends(require_token)])
    async def mcp_check_status(request: Request, body: CheckStatusBody) -> JSONResponse:
        tools: CoordinationTools = request.app.state.tools
        result = await tools.check_status(
            body.directory,
            max_age_hours=body.max_age_hours,
            auto_clean_stale=body.auto_clean_stale,
            new_agent_id=body.new_agent_id,
            new_work_description=body.new_work_description,
        )
        return _tool_response(request, result, body.request_id)

    @app.post("/mcp/update_user", dependencies=[Depends(require_token)])
    async def mcp_update_user(request: Request, body: UpdateUserBody) -> JSONResponse:
        tools: CoordinationTools = request.app.state.tools
        result = await tools.update_user(body.message_id, body.update_content)
        return _tool_response(request, result, body.request_id)

    @app.post("/mcp/initiate_conversation", dependencies=[Depends(require_token)])
    async def mcp_initiate_conversation(
        request: Request, body: InitiateConversationBody
    ) -> JSONResponse:
        tools: CoordinationTools = request.app.state.tools
        log.info("Delegated conversation on %s (%s)", body.platform, body.request_id)
        result = await tools.initiate_conversation(
            body.platform,
            body.content,
            channel_id=body.channel_id,
            agent_id=body.agent_id,
        )
        return _tool_response(request, result, body.request_id)
