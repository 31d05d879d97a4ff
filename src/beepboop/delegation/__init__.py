"""Forwarding of tool calls to a shared listener process."""

from beepboop.delegation.client import (
    REQUEST_ID_HEADER,
    DelegationClient,
    DelegationResult,
    serialized_length,
)

__all__ = [
    "DelegationClient",
    "DelegationResult",
    "REQUEST_ID_HEADER",
    "serialized_length",
]
