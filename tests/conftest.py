"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

from docrelay.config import RelayConfig, Settings
from docrelay.exceptions import RelayAttemptError

BOOK = "\n".join(
    [
        "= Book",
        "author: Jane Doe",
        "summary: A small book",
        "",
        "== Ch1",
        "",
        "=== S1",
        "",
        "Section one.",
        "",
        "=== S2",
        "",
        "Section two.",
    ]
)

RELAY_A = "wss://relay-a.example"
RELAY_B = "wss://relay-b.example"
RELAY_C = "wss://relay-c.example"


class FakeSigner:
    """Deterministic signer; signatures are not real Schnorr signatures."""

    def __init__(self, pubkey: str = "ab" * 32):
        self.pubkey = pubkey
        self.signed: list[bytes] = []

    def public_key(self) -> str:
        return self.pubkey

    def sign(self, digest: bytes) -> str:
        self.signed.append(digest)
        return hashlib.sha512(digest).hexdigest()


class FakeNetwork:
    """In-process relays with scripted behavior per URL.

    ``script[url]`` is a list of publish actions consumed one per attempt;
    the last action repeats. Actions: "ok", "reject", "error", "hang".
    URLs in ``down`` refuse every connection.
    """

    def __init__(self, script: dict[str, list[str]] | None = None, down: set[str] | None = None):
        self.script = {url: list(actions) for url, actions in (script or {}).items()}
        self.down = set(down or ())
        self.hang_queries: set[str] = set()
        self.stored: dict[str, list[dict[str, Any]]] = {}
        self.canned: dict[str, list[dict[str, Any]]] = {}  # query results overriding stored events
        self.connects: Counter[str] = Counter()
        self.attempts: Counter[str] = Counter()
        self.queries: list[tuple[str, list[dict[str, Any]]]] = []
        self.publish_order: list[str] = []  # "d" tags in the order relays first saw them

    def next_action(self, url: str) -> str:
        actions = self.script.get(url) or ["ok"]
        return actions.pop(0) if len(actions) > 1 else actions[0]

    def factory(self, url: str) -> "FakeRelayClient":
        return FakeRelayClient(self, url)


class FakeRelayClient:
    def __init__(self, network: FakeNetwork, url: str):
        self.network = network
        self.url = url
        self.connected = False

    async def connect(self) -> None:
        self.network.connects[self.url] += 1
        if self.url in self.network.down:
            raise RelayAttemptError(self.url, "connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def publish(self, event: dict[str, Any]) -> str:
        self.network.attempts[self.url] += 1
        action = self.network.next_action(self.url)
        if action == "hang":
            await asyncio.sleep(3600)
        if action == "reject":
            raise RelayAttemptError(self.url, "rejected: blocked")
        if action == "error":
            raise RelayAttemptError(self.url, "connection reset")
        stored = self.network.stored.setdefault(self.url, [])
        if all(e["id"] != event["id"] for e in stored):
            stored.append(event)
        identifier = next((t[1] for t in event["tags"] if t[0] == "d"), "")
        if identifier not in self.network.publish_order:
            self.network.publish_order.append(identifier)
        return ""

    async def query(self, filters: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.network.queries.append((self.url, filters))
        if self.url in self.network.hang_queries:
            await asyncio.sleep(3600)
        if self.url in self.network.canned:
            return list(self.network.canned[self.url])
        matches = []
        for event in self.network.stored.get(self.url, []):
            for f in filters:
                if "ids" in f and event["id"] not in f["ids"]:
                    continue
                if "kinds" in f and event["kind"] not in f["kinds"]:
                    continue
                matches.append(event)
                break
        return matches


async def no_sleep(delay: float) -> None:
    """Backoff sleep replacement that returns immediately."""


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def settings() -> Settings:
    """Fast settings for tests: small timeouts, default quorum."""
    return Settings(attempt_timeout=0.2, probe_timeout=0.2, run_timeout=5.0)


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(categories={"favorite-relays": [RELAY_A, RELAY_B], "backup": [RELAY_C]})


@pytest.fixture
def book_path(tmp_path: Path) -> Path:
    path = tmp_path / "book.adoc"
    path.write_text(BOOK, encoding="utf-8")
    return path
