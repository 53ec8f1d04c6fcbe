"""
Dissemination engine: publish one event to many relays, and query many relays.

Each relay gets its own sequence of attempts (connect, publish, disconnect)
with a per-attempt timeout and backoff between attempts. Attempts across
relays share a bounded worker pool. Outcomes are aggregated only after every
relay reached a terminal state.

Relay states:  PENDING -> PUBLISHING -> CONFIRMED | FAILED
Event states:  DURABLE (quorum met) | PARTIALLY_PUBLISHED | FAILED | SKIPPED
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import Settings
from ..exceptions import QuorumNotMetError, RelayAttemptError
from ..signing import SignedEvent
from .client import ClientFactory
from .retry import RetryPolicy
from .selector import RelayEndpoint

logger = logging.getLogger(__name__)

Relays = Sequence[str | RelayEndpoint]


class RelayState(str, Enum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class EventState(str, Enum):
    DURABLE = "durable"
    PARTIALLY_PUBLISHED = "partially_published"
    FAILED = "failed"
    SKIPPED = "skipped"  # never dispatched (run timeout or aborted run)


@dataclass
class PublishOutcome:
    """Result of publishing one event to one relay."""

    event_id: str
    relay_url: str
    success: bool = False
    attempts: int = 0
    last_error: str | None = None
    message: str = ""  # relay acknowledgement text
    state: RelayState = RelayState.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "relayUrl": self.relay_url,
            "success": self.success,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "state": self.state.value,
        }


@dataclass
class EventOutcome:
    """Per-event aggregate over all relay outcomes."""

    event_id: str
    identifier: str
    kind: int
    title: str = ""
    quorum: int = 1
    outcomes: list[PublishOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def state(self) -> EventState:
        if self.skipped:
            return EventState.SKIPPED
        if self.success_count >= self.quorum:
            return EventState.DURABLE
        if self.success_count > 0:
            return EventState.PARTIALLY_PUBLISHED
        return EventState.FAILED

    @property
    def durable(self) -> bool:
        return self.state is EventState.DURABLE

    def failed_relays(self) -> dict[str, str]:
        """Relay URL -> last error, for relays that never confirmed."""
        return {o.relay_url: o.last_error or "unknown error" for o in self.outcomes if not o.success}

    def interrupt(self, reason: str) -> None:
        """Mark relays that have not reached a terminal state as failed."""
        for o in self.outcomes:
            if o.state in (RelayState.PENDING, RelayState.PUBLISHING):
                o.state = RelayState.FAILED
                o.last_error = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "identifier": self.identifier,
            "kind": self.kind,
            "title": self.title,
            "successCount": self.success_count,
            "quorum": self.quorum,
            "state": self.state.value,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def _relay_urls(relays: Relays) -> list[str]:
    urls: list[str] = []
    for relay in relays:
        url = relay.url if isinstance(relay, RelayEndpoint) else relay
        if url not in urls:
            urls.append(url)
    return urls


class DisseminationEngine:
    """Publishes events with retry and quorum, and runs de-duplicating queries."""

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        retry: RetryPolicy | None = None,
        attempt_timeout: float = 10.0,
        max_concurrency: int = 4,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client_factory = client_factory
        self.retry = retry or RetryPolicy()
        self.attempt_timeout = attempt_timeout
        self.max_concurrency = max_concurrency
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, client_factory: ClientFactory, **kwargs) -> DisseminationEngine:
        return cls(
            client_factory,
            retry=RetryPolicy.from_settings(settings),
            attempt_timeout=settings.attempt_timeout,
            max_concurrency=settings.max_concurrency,
            **kwargs,
        )

    async def _attempt(self, url: str, event: SignedEvent) -> str:
        client = self.client_factory(url)
        try:
            await client.connect()
            return await client.publish(event.to_dict())
        finally:
            await client.disconnect()

    async def _publish_to_relay(
        self, event: SignedEvent, outcome: PublishOutcome, pool: asyncio.Semaphore
    ) -> PublishOutcome:
        url = outcome.relay_url
        for attempt in range(1, self.retry.max_attempts + 1):
            async with pool:
                outcome.state = RelayState.PUBLISHING
                outcome.attempts = attempt
                try:
                    message = await asyncio.wait_for(self._attempt(url, event), timeout=self.attempt_timeout)
                except asyncio.TimeoutError:
                    outcome.last_error = f"timed out after {self.attempt_timeout:g}s"
                except RelayAttemptError as e:
                    outcome.last_error = e.reason
                else:
                    outcome.success = True
                    outcome.message = message
                    outcome.last_error = None
                    outcome.state = RelayState.CONFIRMED
                    logger.debug("%s confirmed %s on attempt %d", url, event.identifier or event.id, attempt)
                    return outcome

            if self.retry.should_retry(attempt):
                delay = self.retry.delay(attempt)
                logger.info(
                    "Publish of %s to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    event.identifier or event.id, url, attempt, self.retry.max_attempts,
                    outcome.last_error, delay,
                )
                await self._sleep(delay)

        outcome.state = RelayState.FAILED
        logger.warning(
            "Publish of %s to %s failed after %d attempts: %s",
            event.identifier or event.id, url, outcome.attempts, outcome.last_error,
        )
        return outcome

    async def publish(
        self,
        event: SignedEvent,
        relays: Relays,
        quorum: int = 1,
        *,
        title: str = "",
        outcome: EventOutcome | None = None,
    ) -> EventOutcome:
        """Publish one event to every relay and check the quorum.

        Per-relay outcomes are filled into ``outcome`` as attempts progress, so a
        caller that cancels the publish still sees which relays confirmed.

        Returns:
            EventOutcome in state DURABLE

        Raises:
            ValueError: quorum below 1 or above the number of relays
            QuorumNotMetError: fewer than ``quorum`` relays confirmed
        """
        urls = _relay_urls(relays)
        if quorum < 1:
            raise ValueError(f"quorum must be at least 1, got {quorum}")
        if quorum > len(urls):
            raise ValueError(f"quorum {quorum} exceeds the number of relays ({len(urls)})")

        aggregate = outcome if outcome is not None else EventOutcome(
            event_id=event.id, identifier=event.identifier, kind=event.kind, title=title
        )
        aggregate.quorum = quorum
        aggregate.outcomes = [PublishOutcome(event_id=event.id, relay_url=url) for url in urls]

        pool = asyncio.Semaphore(self.max_concurrency)
        await asyncio.gather(*(self._publish_to_relay(event, o, pool) for o in aggregate.outcomes))

        logger.info(
            "Event %s: %d/%d relays confirmed (quorum %d) -> %s",
            event.identifier or event.id, aggregate.success_count, len(urls), quorum, aggregate.state.value,
        )
        if not aggregate.durable:
            raise QuorumNotMetError(aggregate)
        return aggregate

    async def _query_relay(
        self, url: str, filters: list[dict[str, Any]], pool: asyncio.Semaphore
    ) -> list[dict[str, Any]]:
        async with pool:
            client = self.client_factory(url)
            try:
                await client.connect()
                return await asyncio.wait_for(client.query(filters), timeout=self.attempt_timeout)
            except asyncio.TimeoutError:
                logger.warning("Query on %s timed out after %gs, skipped", url, self.attempt_timeout)
            except RelayAttemptError as e:
                logger.warning("Query on %s failed, skipped: %s", url, e.reason)
            finally:
                await client.disconnect()
        return []

    async def query(self, filters: list[dict[str, Any]] | dict[str, Any], relays: Relays) -> list[dict[str, Any]]:
        """Run the same filters on every relay; de-duplicate events by id.

        The first copy of an event wins, in relay order then arrival order.
        """
        if isinstance(filters, dict):
            filters = [filters]
        pool = asyncio.Semaphore(self.max_concurrency)
        urls = _relay_urls(relays)
        results = await asyncio.gather(*(self._query_relay(url, filters, pool) for url in urls))

        seen: set[str] = set()
        events: list[dict[str, Any]] = []
        for batch in results:
            for event in batch:
                event_id = event.get("id")
                if not event_id or event_id in seen:
                    continue
                seen.add(event_id)
                events.append(event)
        logger.debug("Query returned %d unique events from %d relays", len(events), len(urls))
        return events
