"""Adapters package - Bridge between the relay engine and client transports.

This package contains the agent event router, the outbound chat
notification codec, and the fan-out event bus that the gateway server
drains into SSE streams.
"""
from __future__ import annotations

__all__ = [
    "AgentEventHandler",
    "EventBus",
    "Subscriber",
]

from chatrelay.adapters.chat_router import AgentEventHandler
from chatrelay.adapters.event_bus import EventBus, Subscriber
