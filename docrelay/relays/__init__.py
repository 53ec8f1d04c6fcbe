"""Relay selection, dissemination and query."""

from __future__ import annotations

from .client import RelayClient, WebSocketRelayClient, websocket_client_factory
from .engine import DisseminationEngine, EventOutcome, EventState, PublishOutcome, RelayState
from .retry import RetryPolicy
from .selector import RelayEndpoint, RelaySelector

__all__ = [
    # Client
    "RelayClient",
    "WebSocketRelayClient",
    "websocket_client_factory",
    # Engine
    "DisseminationEngine",
    "EventOutcome",
    "EventState",
    "PublishOutcome",
    "RelayState",
    "RetryPolicy",
    # Selection
    "RelayEndpoint",
    "RelaySelector",
]
