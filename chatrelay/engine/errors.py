"""Exception hierarchy for the chat relay.

Upstream failures never cross the router as exceptions; they become
terminal chat notifications. These types cover the edges where a
caller has to react: bad ingest payloads, store lookups, transport
requests and configuration.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

MAX_ERROR_MESSAGE_CHARS = 2000


class ChatRelayError(Exception):
    """Base exception for all chat relay errors."""


class InvalidAgentEventError(ChatRelayError):
    """A raw agent event payload is missing required fields."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid agent event: {reason}")


class SessionLookupError(ChatRelayError):
    """A session entry could not be loaded."""
    def __init__(self, session_key: str, reason: str):
        self.session_key = session_key
        self.reason = reason
        super().__init__(f"Cannot load session {session_key}: {reason}")


class GatewayRequestError(ChatRelayError):
    """A client request to the gateway was rejected or never arrived."""
    def __init__(self, method: str, reason: str, status: int | None = None):
        self.method = method
        self.reason = reason
        self.status = status
        suffix = f" (status {status})" if status is not None else ""
        super().__init__(f"Gateway request {method} failed{suffix}: {reason}")


class ConfigError(ChatRelayError):
    """Configuration file could not be interpreted."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")


def format_error_for_log(value: Any) -> str:
    """Render an upstream error value as a short human-readable string."""
    if isinstance(value, BaseException):
        message = str(value)
        text = f"{type(value).__name__}: {message}" if message else type(value).__name__
    elif isinstance(value, str):
        text = value
    elif isinstance(value, Mapping):
        inner = value.get("message") or value.get("error")
        if isinstance(inner, str) and inner:
            text = inner
        else:
            try:
                text = json.dumps(value, separators=(",", ":"), default=str)
            except (TypeError, ValueError):
                text = str(value)
    else:
        text = str(value)
    if len(text) > MAX_ERROR_MESSAGE_CHARS:
        text = text[: MAX_ERROR_MESSAGE_CHARS - 3] + "..."
    return text
