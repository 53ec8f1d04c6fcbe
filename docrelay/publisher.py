"""
Document publisher: one publish invocation from source to report.

Phases:
1. compile (parse, event graph, plan); errors abort before any network
2. dry run stops here with the plan
3. relay selection and probing
4. sign and disseminate in plan order under a global run timeout
5. optional verification query
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import RelayConfig, Settings, load_relay_config
from .document.graph import EventGraph, build_event_graph
from .document.loader import load_document
from .document.parser import parse_document
from .exceptions import NoReachableRelaysError, PublishTimeoutError, QuorumNotMetError
from .models import Dialect, Document, EventRecord
from .planning import BaseResult, PublishPlan, plan_publication
from .relays.client import ClientFactory, websocket_client_factory
from .relays.engine import DisseminationEngine, EventOutcome, EventState
from .relays.selector import RelayEndpoint, RelaySelector, RelaySpec
from .secrets import SecretsProvider
from .signing import SignedEvent, Signer, load_signer, sign_record

logger = logging.getLogger(__name__)


@dataclass
class PublishReport(BaseResult):
    """Outcome of one publish invocation. ``success`` is true iff there are no errors."""

    document_title: str = ""
    total_expected_events: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False
    plan: PublishPlan | None = None
    relays: list[str] = field(default_factory=list)

    @property
    def total_published_events(self) -> int:
        return sum(1 for o in self.outcomes if o.state is EventState.DURABLE)

    def failed_identifiers(self) -> list[str]:
        """Identifiers of events that did not become durable, in plan order."""
        return [o.identifier for o in self.outcomes if o.state is not EventState.DURABLE]

    def finish(self) -> PublishReport:
        self.success = not self.errors
        self.error = self.errors[0] if self.errors else None
        return self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "documentTitle": self.document_title,
            "totalExpectedEvents": self.total_expected_events,
            "totalPublishedEvents": 0 if self.dry_run else self.total_published_events,
            "perEventOutcomes": [o.to_dict() for o in self.outcomes],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "dryRun": self.dry_run,
        }
        if self.relays:
            data["relays"] = list(self.relays)
        if self.plan is not None:
            data["plan"] = self.plan.to_dict()
        return data


class DocumentPublisher:
    """Compiles documents and disseminates the resulting events."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        relay_config: RelayConfig | None = None,
        client_factory: ClientFactory | None = None,
        signer: Signer | None = None,
        secrets: SecretsProvider | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or Settings()
        self.relay_config = (
            relay_config if relay_config is not None else load_relay_config(self.settings.relay_config)
        )
        self.client_factory = client_factory or websocket_client_factory(self.settings.attempt_timeout)
        self.clock = clock
        self._signer = signer
        self._secrets = secrets
        self.selector = RelaySelector.from_settings(self.settings, self.relay_config, self.client_factory)
        self.engine = DisseminationEngine.from_settings(self.settings, self.client_factory, sleep=sleep)

    @property
    def signer(self) -> Signer:
        """Signer, resolved from the key reference on first use."""
        if self._signer is None:
            self._signer = load_signer(self.settings.key_ref, self._secrets)
        return self._signer

    def load(self, source: Path | str, dialect: Dialect | None = None) -> Document:
        """Parse a file (Path) or raw text (str)."""
        if isinstance(source, Path):
            return load_document(source, dialect)
        return parse_document(source, dialect)

    def compile(
        self,
        document: Document,
        content_level: int | str | None = None,
        content_kind: int | str | None = None,
        *,
        author: str = "",
    ) -> tuple[EventGraph, PublishPlan]:
        """Build the event graph and plan; settings fill in what metadata leaves open."""
        if content_level is None and not document.metadata.get("content_level"):
            content_level = self.settings.content_level
        if content_kind is None and not document.metadata.get("content_kind"):
            content_kind = self.settings.content_kind
        graph = build_event_graph(
            document,
            content_level,
            content_kind,
            author=author,
            created_at=int(self.clock()),
        )
        return graph, plan_publication(graph, title=document.title)

    def publish_document(
        self,
        source: Path | str,
        content_level: int | str | None = None,
        content_kind: int | str | None = None,
        relays: RelaySpec = None,
        dry_run: bool = False,
        *,
        dialect: Dialect | None = None,
        quorum: int | None = None,
        verify: bool | None = None,
    ) -> PublishReport:
        """Synchronous entry point; runs the async publication to completion."""
        return asyncio.run(
            self.publish_document_async(
                source,
                content_level,
                content_kind,
                relays,
                dry_run,
                dialect=dialect,
                quorum=quorum,
                verify=verify,
            )
        )

    async def publish_document_async(
        self,
        source: Path | str,
        content_level: int | str | None = None,
        content_kind: int | str | None = None,
        relays: RelaySpec = None,
        dry_run: bool = False,
        *,
        dialect: Dialect | None = None,
        quorum: int | None = None,
        verify: bool | None = None,
    ) -> PublishReport:
        """Compile and publish one document.

        Compiler errors (ParseError, PlanError, ConfigError, SigningError)
        propagate; relay problems end up in the report.
        """
        document = self.load(source, dialect)
        author = "" if dry_run else self.signer.public_key()
        _, plan = self.compile(document, content_level, content_kind, author=author)

        report = PublishReport(
            document_title=document.title,
            total_expected_events=len(plan),
            warnings=[*document.warnings, *plan.warnings],
            dry_run=dry_run,
        )
        if dry_run:
            logger.info("Dry run: %d events planned for %r", len(plan), document.title)
            report.plan = plan
            return report.finish()

        spec = relays or document.metadata.get("relays") or self.settings.relays
        try:
            live = await self.selector.select(spec)
        except NoReachableRelaysError as e:
            logger.error("%s", e)
            report.errors.append(str(e))
            report.outcomes = [self._skipped(record, quorum or self.settings.quorum) for record in plan]
            return report.finish()
        report.relays = [endpoint.url for endpoint in live]

        quorum = quorum or self.settings.quorum
        if quorum > len(live):
            message = f"quorum {quorum} cannot be met: only {len(live)} relay(s) reachable"
            logger.error(message)
            report.errors.append(message)
            report.outcomes = [self._skipped(record, quorum) for record in plan]
            return report.finish()

        signed = await self._disseminate(plan, live, quorum, report)

        if verify is None:
            verify = self.settings.verify
        if verify:
            await self._verify(signed, live, report)
        return report.finish()

    def _skipped(self, record: EventRecord, quorum: int) -> EventOutcome:
        return EventOutcome(
            event_id="",
            identifier=record.identifier,
            kind=record.kind,
            title=record.title,
            quorum=quorum,
            skipped=True,
        )

    async def _disseminate(
        self, plan: PublishPlan, live: list[RelayEndpoint], quorum: int, report: PublishReport
    ) -> list[SignedEvent]:
        relay_hint = live[0].url
        signed: list[SignedEvent] = []
        in_flight: list[EventOutcome] = []  # at most one: the event being published

        async def run_plan() -> None:
            for record in plan:
                event = sign_record(record, self.signer, relay_hint)
                signed.append(event)
                outcome = EventOutcome(
                    event_id=event.id,
                    identifier=record.identifier,
                    kind=record.kind,
                    title=record.title,
                    quorum=quorum,
                )
                in_flight[:] = [outcome]
                try:
                    await self.engine.publish(event, live, quorum, title=record.title, outcome=outcome)
                except QuorumNotMetError as e:
                    if record.is_root:
                        logger.error("Root event not durable: %s", e)
                        report.errors.append(str(e))
                    else:
                        report.warnings.append(str(e))
                in_flight.clear()
                report.outcomes.append(outcome)

        try:
            await asyncio.wait_for(run_plan(), timeout=self.settings.run_timeout)
        except asyncio.TimeoutError:
            for outcome in in_flight:
                outcome.interrupt("run timeout")
                message = (
                    f"event {outcome.identifier} interrupted by the run timeout: "
                    f"{outcome.success_count}/{outcome.quorum} required relays confirmed"
                )
                logger.warning(message)
                report.warnings.append(message)
                report.outcomes.append(outcome)
            done = {o.identifier for o in report.outcomes}
            unexecuted = [record for record in plan if record.identifier not in done]
            error = PublishTimeoutError(self.settings.run_timeout, [r.identifier for r in unexecuted])
            logger.error("%s", error)
            report.errors.append(str(error))
            report.outcomes.extend(self._skipped(record, quorum) for record in unexecuted)
        return signed

    async def _verify(self, signed: list[SignedEvent], live: list[RelayEndpoint], report: PublishReport) -> None:
        durable = {o.event_id for o in report.outcomes if o.state is EventState.DURABLE}
        ids = [event.id for event in signed if event.id in durable]
        if not ids:
            return
        found = {event.get("id") for event in await self.engine.query({"ids": ids}, live)}
        for event in signed:
            if event.id in durable and event.id not in found:
                message = f"event {event.identifier} ({event.id[:12]}) was not returned by any relay"
                logger.warning(message)
                report.warnings.append(message)
