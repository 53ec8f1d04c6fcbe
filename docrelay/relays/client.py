"""
Relay client: connect, publish, query, disconnect.

Only the minimal message set is spoken:
- ["EVENT", event] answered by ["OK", id, accepted, message]
- ["REQ", sub_id, filter...] answered by EVENT messages and ["EOSE", sub_id]
- ["CLOSE", sub_id]

Timeouts are enforced by the caller around each attempt.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import websockets

from ..exceptions import RelayAttemptError

logger = logging.getLogger(__name__)


class RelayClient(Protocol):
    """One connection to one relay."""

    url: str

    async def connect(self) -> None: ...

    async def publish(self, event: dict[str, Any]) -> str:
        """Send an event; return the relay's acknowledgement message."""
        ...

    async def query(self, filters: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Return stored events matching any of the filters."""
        ...

    async def disconnect(self) -> None: ...


ClientFactory = Callable[[str], RelayClient]


class WebSocketRelayClient:
    """Relay client over a websocket connection."""

    def __init__(self, url: str, open_timeout: float = 10.0):
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise RelayAttemptError(self.url, f"connect failed: {e}") from e
        logger.debug("Connected to %s", self.url)

    async def disconnect(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        try:
            await ws.close()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.debug("Error closing %s: %s", self.url, e)

    async def _send(self, message: list[Any]) -> None:
        if self._ws is None:
            raise RelayAttemptError(self.url, "not connected")
        try:
            await self._ws.send(json.dumps(message, separators=(",", ":"), ensure_ascii=False))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise RelayAttemptError(self.url, f"send failed: {e}") from e

    async def _receive(self) -> list[Any]:
        if self._ws is None:
            raise RelayAttemptError(self.url, "not connected")
        try:
            raw = await self._ws.recv()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise RelayAttemptError(self.url, f"connection lost: {e}") from e
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            raise RelayAttemptError(self.url, "malformed message from relay") from None
        if not isinstance(message, list) or not message:
            raise RelayAttemptError(self.url, "malformed message from relay")
        return message

    async def publish(self, event: dict[str, Any]) -> str:
        await self._send(["EVENT", event])
        while True:
            message = await self._receive()
            if message[0] == "OK" and len(message) >= 3 and message[1] == event["id"]:
                accepted = bool(message[2])
                reason = str(message[3]) if len(message) > 3 else ""
                if not accepted:
                    raise RelayAttemptError(self.url, f"rejected: {reason or 'no reason given'}")
                return reason
            if message[0] == "NOTICE":
                logger.info("Notice from %s: %s", self.url, message[1] if len(message) > 1 else "")

    async def query(self, filters: list[dict[str, Any]]) -> list[dict[str, Any]]:
        sub_id = uuid.uuid4().hex[:16]
        await self._send(["REQ", sub_id, *filters])
        events: list[dict[str, Any]] = []
        try:
            while True:
                message = await self._receive()
                kind = message[0]
                if kind == "EVENT" and len(message) >= 3 and message[1] == sub_id:
                    if isinstance(message[2], dict):
                        events.append(message[2])
                elif kind == "EOSE" and message[1:2] == [sub_id]:
                    break
                elif kind == "CLOSED" and message[1:2] == [sub_id]:
                    reason = message[2] if len(message) > 2 else ""
                    raise RelayAttemptError(self.url, f"subscription closed: {reason}")
                elif kind == "NOTICE":
                    logger.info("Notice from %s: %s", self.url, message[1] if len(message) > 1 else "")
        finally:
            if self._ws is not None:
                try:
                    await self._send(["CLOSE", sub_id])
                except RelayAttemptError as e:
                    logger.debug("Could not close subscription on %s: %s", self.url, e)
        return events


def websocket_client_factory(open_timeout: float = 10.0) -> ClientFactory:
    def factory(url: str) -> RelayClient:
        return WebSocketRelayClient(url, open_timeout=open_timeout)

    return factory
