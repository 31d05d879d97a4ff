"""Listener process: the HTTP app under uvicorn, plus Slack capture."""

from __future__ import annotations

import asyncio

import uvicorn
from fastapi import FastAPI

from beepboop.config.schema import Config
from beepboop.conversations.inbox import InboxStore
from beepboop.listener.routes import create_app
from beepboop.listener.slack import SlackCapture
from beepboop.logging import get_logger
from beepboop.tools import CoordinationTools

log = get_logger("listener")


def build_listener_app(config: Config, tools: CoordinationTools | None = None) -> FastAPI:
    """The listener app with tools that always execute locally."""
    tools = tools or CoordinationTools.from_config(config, delegate=False)
    return create_app(tools, auth_token=config.listener.auth_token)


def slack_capture_for(config: Config, inbox: InboxStore) -> SlackCapture | None:
    """A SlackCapture when capture is enabled and both tokens are set, else None."""
    slack = config.platforms.slack
    if not slack.capture_enabled:
        return None
    capture = SlackCapture(slack, inbox)
    if not capture.configured:
        if slack.bot_token:
            log.info("Slack capture off: BEEP_BOOP_SLACK_APP_TOKEN is not set")
        return None
    return capture


async def serve_listener(config: Config) -> None:
    """Run the listener in the foreground until interrupted.

    Slack capture shares the app's inbox. If it cannot connect the HTTP
    endpoints still serve; events can then be posted to /messages.
    """
    tools = CoordinationTools.from_config(config, delegate=False)
    server = uvicorn.Server(
        uvicorn.Config(
            build_listener_app(config, tools),
            host=config.listener.host,
            port=config.listener.port,
            log_level="warning",
            access_log=False,
        )
    )

    capture = slack_capture_for(config, tools.inbox)
    if capture is not None:
        try:
            await asyncio.to_thread(capture.start)
        except Exception as e:
            log.error("Slack capture failed to start: %s", e)
            capture = None

    log.info("Listener serving on http://%s:%d", config.listener.host, config.listener.port)
    try:
        await server.serve()
    finally:
        if capture is not None:
            capture.close()
