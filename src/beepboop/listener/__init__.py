"""Shared listener process: one HTTP endpoint many coordination tools delegate to."""

from beepboop.listener.routes import create_app
from beepboop.listener.server import build_listener_app, serve_listener, slack_capture_for
from beepboop.listener.slack import SlackCapture, record_from_event

__all__ = [
    "create_app",
    "build_listener_app",
    "serve_listener",
    "slack_capture_for",
    "SlackCapture",
    "record_from_event",
]
