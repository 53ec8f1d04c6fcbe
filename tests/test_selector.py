"""Tests for relay spec resolution and probing."""

import asyncio
import logging

import pytest

from docrelay.config import DEFAULT_RELAY, RelayConfig
from docrelay.exceptions import NoReachableRelaysError
from docrelay.kinds import PROBE_KINDS
from docrelay.relays.selector import RelaySelector

from .conftest import RELAY_A, RELAY_B, RELAY_C, FakeNetwork


def _selector(network: FakeNetwork, relay_config: RelayConfig) -> RelaySelector:
    return RelaySelector(relay_config, network.factory, probe_timeout=0.1)


def test_resolve_url_category_and_list(network: FakeNetwork, relay_config: RelayConfig):
    selector = _selector(network, relay_config)

    assert [e.url for e in selector.resolve_candidates("wss://solo.example")] == ["wss://solo.example"]
    assert [e.url for e in selector.resolve_candidates("backup")] == [RELAY_C]
    assert [e.url for e in selector.resolve_candidates(["backup", RELAY_A])] == [RELAY_C, RELAY_A]
    assert [e.url for e in selector.resolve_candidates(f"{RELAY_B}, favorite-relays")] == [RELAY_B, RELAY_A]
    assert selector.resolve_candidates("backup")[0].category == "backup"


def test_all_flattens_without_duplicates(network: FakeNetwork):
    config = RelayConfig(categories={"one": [RELAY_A, RELAY_B], "two": [RELAY_B, RELAY_C]})
    selector = _selector(network, config)

    assert [e.url for e in selector.resolve_candidates("all")] == [RELAY_A, RELAY_B, RELAY_C]
    assert [e.url for e in selector.resolve_candidates(None)] == [RELAY_A, RELAY_B, RELAY_C]
    assert [e.category for e in selector.resolve_candidates("all")] == ["one", "one", "two"]


def test_unknown_category_falls_back_to_all(network: FakeNetwork, relay_config: RelayConfig, caplog):
    selector = _selector(network, relay_config)
    with caplog.at_level(logging.WARNING, logger="docrelay"):
        candidates = selector.resolve_candidates("nonexistent")

    assert [e.url for e in candidates] == [RELAY_A, RELAY_B, RELAY_C]
    assert "nonexistent" in caplog.text


def test_select_keeps_live_relays(network: FakeNetwork, relay_config: RelayConfig):
    network.down.add(RELAY_B)
    live = asyncio.run(_selector(network, relay_config).select("favorite-relays"))

    assert [e.url for e in live] == [RELAY_A]
    assert all(e.live for e in live)


def test_probe_uses_small_read_query(network: FakeNetwork, relay_config: RelayConfig):
    asyncio.run(_selector(network, relay_config).select(RELAY_A))

    url, filters = network.queries[0]
    assert url == RELAY_A
    assert filters == [{"kinds": PROBE_KINDS, "limit": 1}]


def test_probe_timeout_marks_relay_down(network: FakeNetwork, relay_config: RelayConfig):
    network.hang_queries.add(RELAY_A)
    selector = _selector(network, relay_config)
    probed = asyncio.run(selector.probe_all(selector.resolve_candidates("favorite-relays")))

    by_url = {e.url: e for e in probed}
    assert not by_url[RELAY_A].live
    assert by_url[RELAY_A].error == "probe timed out"
    assert by_url[RELAY_B].live


def test_falls_back_to_default_relay(network: FakeNetwork, relay_config: RelayConfig):
    network.down.update({RELAY_A, RELAY_B})
    live = asyncio.run(_selector(network, relay_config).select("favorite-relays"))

    assert [e.url for e in live] == [DEFAULT_RELAY]


def test_empty_config_uses_default_relay(network: FakeNetwork):
    live = asyncio.run(_selector(network, RelayConfig()).select("all"))
    assert [e.url for e in live] == [DEFAULT_RELAY]


def test_no_reachable_relays(network: FakeNetwork, relay_config: RelayConfig):
    network.down.update({RELAY_A, RELAY_B, DEFAULT_RELAY})

    with pytest.raises(NoReachableRelaysError) as exc:
        asyncio.run(_selector(network, relay_config).select("favorite-relays"))
    assert exc.value.candidates == [RELAY_A, RELAY_B]
    assert exc.value.default_relay == DEFAULT_RELAY
