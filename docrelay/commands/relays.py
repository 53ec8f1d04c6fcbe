"""Relay probing and query command implementations."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from rich.console import Console
from rich.table import Table

from ..config import RelayConfig, Settings
from ..exceptions import NoReachableRelaysError
from ..relays.client import websocket_client_factory
from ..relays.engine import DisseminationEngine
from ..relays.selector import RelaySelector


def run_relays(settings: Settings, relay_config: RelayConfig, spec: str | None = None) -> int:
    """Resolve a relay spec and probe every candidate.

    Returns:
        Exit code (0 = at least one relay live, 1 = none)
    """
    console = Console(stderr=True)
    selector = RelaySelector.from_settings(
        settings, relay_config, websocket_client_factory(settings.probe_timeout)
    )
    candidates = selector.resolve_candidates(spec or settings.relays)
    if not candidates:
        console.print(f"No relays configured; the default relay is {settings.default_relay}", style="yellow")
        candidates = selector.resolve_candidates(settings.default_relay)

    probed = asyncio.run(selector.probe_all(candidates))

    table = Table(title="Relays")
    table.add_column("URL")
    table.add_column("Category", style="cyan")
    table.add_column("Status")
    for endpoint in probed:
        status = "[green]live[/green]" if endpoint.live else f"[red]down[/red] {endpoint.error or ''}"
        table.add_row(endpoint.url, endpoint.category or "-", status)
    console.print(table)

    live = sum(1 for e in probed if e.live)
    console.print(f"{live}/{len(probed)} relays reachable")
    return 0 if live else 1


def build_filter(
    kinds: tuple[int, ...] = (),
    authors: tuple[str, ...] = (),
    identifiers: tuple[str, ...] = (),
    ids: tuple[str, ...] = (),
    limit: int | None = None,
) -> dict[str, Any]:
    """Build one relay filter from command line values."""
    query: dict[str, Any] = {}
    if ids:
        query["ids"] = list(ids)
    if kinds:
        query["kinds"] = list(kinds)
    if authors:
        query["authors"] = list(authors)
    if identifiers:
        query["#d"] = list(identifiers)
    if limit is not None:
        query["limit"] = limit
    return query


def run_query(
    settings: Settings,
    relay_config: RelayConfig,
    query: dict[str, Any],
    spec: str | None = None,
) -> int:
    """Query live relays and print de-duplicated events as JSON lines.

    Returns:
        Exit code (0 = query ran, 1 = no reachable relays)
    """
    console = Console(stderr=True)
    factory = websocket_client_factory(settings.attempt_timeout)
    selector = RelaySelector.from_settings(settings, relay_config, factory)
    engine = DisseminationEngine.from_settings(settings, factory)

    async def run() -> list[dict[str, Any]]:
        live = await selector.select(spec or settings.relays)
        return await engine.query(query, live)

    try:
        events = asyncio.run(run())
    except NoReachableRelaysError as e:
        console.print(f"Error: {e}", style="bold red")
        return 1

    for event in events:
        print(json.dumps(event, ensure_ascii=False))
    console.print(f"{len(events)} event(s)")
    return 0
