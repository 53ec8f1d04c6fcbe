"""Tests for the dissemination engine: retry, quorum and query de-duplication."""

import asyncio
import random

import pytest

from docrelay.document.graph import build_event_graph
from docrelay.document.parser import parse_document
from docrelay.exceptions import QuorumNotMetError
from docrelay.relays.engine import DisseminationEngine, EventOutcome, EventState, RelayState
from docrelay.relays.retry import RetryPolicy
from docrelay.signing import SignedEvent, sign_record

from .conftest import RELAY_A, RELAY_B, RELAY_C, FakeNetwork, FakeSigner

RELAYS = [RELAY_A, RELAY_B, RELAY_C]


@pytest.fixture
def event(signer: FakeSigner) -> SignedEvent:
    graph = build_event_graph(parse_document("= Title\n\nHello"), created_at=1)
    return sign_record(graph.records[0], signer)


def _engine(network: FakeNetwork, delays: list[float] | None = None, **kwargs) -> DisseminationEngine:
    async def record_sleep(delay: float) -> None:
        if delays is not None:
            delays.append(delay)

    kwargs.setdefault("retry", RetryPolicy(rng=random.Random(7)))
    return DisseminationEngine(network.factory, attempt_timeout=0.1, sleep=record_sleep, **kwargs)


def test_all_relays_confirm(network: FakeNetwork, event: SignedEvent):
    outcome = asyncio.run(_engine(network).publish(event, RELAYS, quorum=2))

    assert outcome.state is EventState.DURABLE
    assert outcome.success_count == 3
    assert [o.relay_url for o in outcome.outcomes] == RELAYS
    assert all(o.state is RelayState.CONFIRMED and o.attempts == 1 for o in outcome.outcomes)
    assert outcome.failed_relays() == {}


def test_failed_relay_is_retried_then_gives_up(network: FakeNetwork, event: SignedEvent):
    network.down.add(RELAY_C)
    delays: list[float] = []
    outcome = asyncio.run(_engine(network, delays).publish(event, RELAYS, quorum=2))

    assert outcome.state is EventState.DURABLE
    assert outcome.success_count == 2
    failed = outcome.outcomes[2]
    assert failed.state is RelayState.FAILED
    assert failed.attempts == 4
    assert failed.last_error == "connection refused"
    assert network.connects[RELAY_C] == 4
    assert len(delays) == 3


def test_retry_recovers(network: FakeNetwork, event: SignedEvent):
    network.script[RELAY_A] = ["error", "ok"]
    delays: list[float] = []
    outcome = asyncio.run(_engine(network, delays).publish(event, [RELAY_A], quorum=1))

    assert outcome.outcomes[0].success
    assert outcome.outcomes[0].attempts == 2
    assert len(delays) == 1
    assert 1.5 <= delays[0] <= 2.5


def test_quorum_not_met(network: FakeNetwork, event: SignedEvent):
    network.down.update({RELAY_B, RELAY_C})

    with pytest.raises(QuorumNotMetError) as exc:
        asyncio.run(_engine(network).publish(event, RELAYS, quorum=2))

    outcome = exc.value.outcome
    assert outcome.success_count == 1
    assert outcome.state is EventState.PARTIALLY_PUBLISHED
    assert set(exc.value.failed_relays) == {RELAY_B, RELAY_C}
    assert "connection refused" in str(exc.value)


@pytest.mark.parametrize("reachable", [0, 1, 2, 3])
def test_success_iff_reachable_meets_quorum(event: SignedEvent, reachable: int):
    network = FakeNetwork(down=set(RELAYS[reachable:]))
    engine = _engine(network, retry=RetryPolicy(max_retries=0))

    if reachable >= 2:
        outcome = asyncio.run(engine.publish(event, RELAYS, quorum=2))
        assert outcome.success_count == reachable
    else:
        with pytest.raises(QuorumNotMetError) as exc:
            asyncio.run(engine.publish(event, RELAYS, quorum=2))
        assert exc.value.outcome.success_count == reachable


def test_rejection_is_a_failed_attempt(network: FakeNetwork, event: SignedEvent):
    network.script[RELAY_A] = ["reject"]
    with pytest.raises(QuorumNotMetError) as exc:
        asyncio.run(_engine(network, retry=RetryPolicy(max_retries=1)).publish(event, [RELAY_A]))

    outcome = exc.value.outcome
    assert outcome.state is EventState.FAILED
    assert outcome.outcomes[0].attempts == 2
    assert outcome.outcomes[0].last_error == "rejected: blocked"


def test_attempt_timeout_counts_as_failure(network: FakeNetwork, event: SignedEvent):
    network.script[RELAY_A] = ["hang", "ok"]
    outcome = asyncio.run(_engine(network).publish(event, [RELAY_A]))

    assert outcome.outcomes[0].attempts == 2
    assert outcome.durable


def test_cancelled_publish_keeps_confirmed_relays(network: FakeNetwork, event: SignedEvent):
    network.script[RELAY_B] = ["hang"]
    outcome = EventOutcome(event_id=event.id, identifier=event.identifier, kind=event.kind)
    engine = DisseminationEngine(network.factory, attempt_timeout=10.0)

    async def run() -> None:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(engine.publish(event, [RELAY_A, RELAY_B], quorum=2, outcome=outcome), 0.2)

    asyncio.run(run())
    outcome.interrupt("cancelled")

    assert [o.state for o in outcome.outcomes] == [RelayState.CONFIRMED, RelayState.FAILED]
    assert outcome.outcomes[1].last_error == "cancelled"
    assert outcome.state is EventState.PARTIALLY_PUBLISHED


def test_quorum_larger_than_relay_set(network: FakeNetwork, event: SignedEvent):
    with pytest.raises(ValueError):
        asyncio.run(_engine(network).publish(event, [RELAY_A], quorum=2))
    with pytest.raises(ValueError):
        asyncio.run(_engine(network).publish(event, [RELAY_A], quorum=0))


def test_concurrency_is_bounded(event: SignedEvent):
    active = 0
    peak = 0

    class SlowNetwork(FakeNetwork):
        def factory(self, url):
            client = super().factory(url)
            publish = client.publish

            async def slow_publish(payload):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return await publish(payload)

            client.publish = slow_publish
            return client

    relays = [f"wss://relay-{i}.example" for i in range(6)]
    network = SlowNetwork()
    engine = DisseminationEngine(network.factory, max_concurrency=2, attempt_timeout=1.0)
    asyncio.run(engine.publish(event, relays, quorum=6))

    assert peak == 2


def test_query_deduplicates_by_id(network: FakeNetwork):
    shared = {"id": "1" * 64, "kind": 30041, "content": "first"}
    network.canned[RELAY_A] = [shared, {"id": "2" * 64, "kind": 30041}]
    network.canned[RELAY_B] = [dict(shared, content="second copy"), {"id": "3" * 64, "kind": 30041}]

    events = asyncio.run(_engine(network).query({"kinds": [30041]}, [RELAY_A, RELAY_B]))

    assert [e["id"] for e in events] == ["1" * 64, "2" * 64, "3" * 64]
    assert events[0]["content"] == "first"


def test_query_skips_failing_relays(network: FakeNetwork):
    network.down.add(RELAY_B)
    network.hang_queries.add(RELAY_C)
    network.canned[RELAY_A] = [{"id": "1" * 64}]

    events = asyncio.run(_engine(network).query([{"ids": ["1" * 64]}], RELAYS))
    assert [e["id"] for e in events] == ["1" * 64]


def test_retry_policy_backoff():
    policy = RetryPolicy(jitter=0)

    assert [policy.delay(n) for n in (1, 2, 3)] == [2.0, 3.0, 4.5]
    assert policy.delay(10) == 15.0
    assert policy.max_attempts == 4
    assert policy.should_retry(3) and not policy.should_retry(4)


def test_retry_policy_jitter_bounds():
    policy = RetryPolicy(rng=random.Random(1))
    for attempt in range(1, 8):
        base = policy.base(attempt)
        assert 0.75 * base <= policy.delay(attempt) <= 1.25 * base
