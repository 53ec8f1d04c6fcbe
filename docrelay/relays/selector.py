"""Relay selection: resolve a relay spec to endpoints and keep the live ones."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace

from ..config import DEFAULT_RELAY, RelayConfig, Settings
from ..exceptions import NoReachableRelaysError, RelayAttemptError
from ..kinds import PROBE_KINDS
from .client import ClientFactory

logger = logging.getLogger(__name__)

ALL_RELAYS = "all"

RelaySpec = str | list[str] | tuple[str, ...] | None


def is_relay_url(value: str) -> bool:
    return value.startswith(("ws://", "wss://"))


@dataclass(frozen=True)
class RelayEndpoint:
    """A relay candidate; ``live`` reflects the probe of the current call only."""

    url: str
    category: str | None = None
    live: bool = False
    error: str | None = None


def _split_spec(spec: RelaySpec) -> list[str]:
    if spec is None:
        return []
    items = [spec] if isinstance(spec, str) else list(spec)
    parts: list[str] = []
    for item in items:
        parts.extend(p.strip() for p in item.replace(",", " ").split())
    return [p for p in parts if p]


class RelaySelector:
    """Resolves relay specs against a RelayConfig and probes candidates."""

    def __init__(
        self,
        relay_config: RelayConfig,
        client_factory: ClientFactory,
        *,
        probe_timeout: float = 5.0,
        default_relay: str = DEFAULT_RELAY,
    ):
        self.relay_config = relay_config
        self.client_factory = client_factory
        self.probe_timeout = probe_timeout
        self.default_relay = default_relay

    @classmethod
    def from_settings(
        cls, settings: Settings, relay_config: RelayConfig, client_factory: ClientFactory
    ) -> RelaySelector:
        return cls(
            relay_config,
            client_factory,
            probe_timeout=settings.probe_timeout,
            default_relay=settings.default_relay,
        )

    def resolve_candidates(self, spec: RelaySpec) -> list[RelayEndpoint]:
        """Expand URLs and category names into candidate endpoints.

        ``all`` (or an empty spec) flattens every category. Unknown categories
        fall back to ``all``. Order is preserved and duplicates dropped.
        """
        names = _split_spec(spec) or [ALL_RELAYS]
        candidates: dict[str, RelayEndpoint] = {}

        def add(url: str, category: str | None) -> None:
            if url not in candidates:
                candidates[url] = RelayEndpoint(url=url, category=category)

        for name in names:
            if is_relay_url(name):
                add(name, None)
            elif name != ALL_RELAYS and name in self.relay_config:
                for url in self.relay_config.get(name):
                    add(url, name)
            else:
                if name != ALL_RELAYS:
                    logger.warning("Unknown relay category %r, using all relays", name)
                for url in self.relay_config.all():
                    add(url, self.relay_config.category_of(url))
        return list(candidates.values())

    async def probe(self, endpoint: RelayEndpoint) -> RelayEndpoint:
        """Probe one relay with a small read query."""
        client = self.client_factory(endpoint.url)
        try:
            await asyncio.wait_for(self._probe_query(client), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.info("Relay %s did not answer within %gs", endpoint.url, self.probe_timeout)
            return replace(endpoint, live=False, error="probe timed out")
        except RelayAttemptError as e:
            logger.info("Relay %s unreachable: %s", endpoint.url, e.reason)
            return replace(endpoint, live=False, error=e.reason)
        finally:
            await client.disconnect()
        logger.debug("Relay %s is live", endpoint.url)
        return replace(endpoint, live=True, error=None)

    @staticmethod
    async def _probe_query(client) -> None:
        await client.connect()
        await client.query([{"kinds": list(PROBE_KINDS), "limit": 1}])

    async def probe_all(self, endpoints: list[RelayEndpoint]) -> list[RelayEndpoint]:
        return list(await asyncio.gather(*(self.probe(e) for e in endpoints)))

    async def select(self, spec: RelaySpec = None) -> list[RelayEndpoint]:
        """Resolve and probe; fall back to the default relay if none answer.

        Raises:
            NoReachableRelaysError: neither the candidates nor the default relay answered
        """
        candidates = self.resolve_candidates(spec)
        probed = await self.probe_all(candidates)
        live = [e for e in probed if e.live]
        logger.info("%d of %d relays reachable", len(live), len(probed))
        if live:
            return live

        if self.default_relay not in {e.url for e in probed}:
            logger.warning("No reachable relays, trying default relay %s", self.default_relay)
            fallback = await self.probe(RelayEndpoint(url=self.default_relay, category="default"))
            if fallback.live:
                return [fallback]
        raise NoReachableRelaysError([e.url for e in candidates], self.default_relay)
