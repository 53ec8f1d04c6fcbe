"""Parse and publish command implementations."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from ..config import RelayConfig, Settings
from ..models import SectionNode
from ..publisher import DocumentPublisher, PublishReport
from ..relays.engine import EventState

STATE_STYLES = {
    EventState.DURABLE: "green",
    EventState.PARTIALLY_PUBLISHED: "yellow",
    EventState.FAILED: "red",
    EventState.SKIPPED: "dim",
}


def _section_tree(node: SectionNode, tree: Tree | None = None) -> Tree:
    if node.is_content:
        role = f"[cyan]{node.kind} content[/cyan]"
    else:
        role = f"[magenta]{node.kind} index[/magenta]"
    label = f"{node.title} [dim]({node.identifier})[/dim] {role}"
    branch = Tree(label) if tree is None else tree.add(label)
    for child in node.children:
        _section_tree(child, branch)
    return branch


def run_parse(
    path: Path,
    settings: Settings,
    relay_config: RelayConfig,
    content_level: int | None = None,
    content_kind: str | None = None,
    output_json: bool = False,
) -> int:
    """Compile a document and show its section tree and publish plan.

    Returns:
        Exit code (always 0; compiler errors propagate as exceptions)
    """
    console = Console(stderr=True)
    publisher = DocumentPublisher(settings, relay_config=relay_config)
    document = publisher.load(path)
    graph, plan = publisher.compile(document, content_level, content_kind)

    if output_json:
        print(
            json.dumps(
                {
                    "title": document.title,
                    "dialect": document.dialect,
                    "metadata": dict(document.metadata),
                    "contentLevel": plan.content_level,
                    "contentKind": plan.content_kind,
                    "plan": plan.to_dict(),
                    "warnings": [*document.warnings, *plan.warnings],
                },
                indent=2,
            )
        )
        return 0

    if document.metadata:
        table = Table(title="Metadata", show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in sorted(document.metadata.items()):
            table.add_row(key, value)
        console.print(table)

    if graph.tree is not None:
        console.print(_section_tree(graph.tree))
    console.print()
    console.print(plan.summary(), markup=False)
    for warning in document.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    return 0


def _print_report(console: Console, report: PublishReport) -> None:
    table = Table(title=f"Publish: {report.document_title}")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Identifier")
    table.add_column("Relays", justify="right")
    table.add_column("State")
    for step, outcome in enumerate(report.outcomes, 1):
        state = outcome.state
        table.add_row(
            str(step),
            str(outcome.kind),
            outcome.identifier,
            f"{outcome.success_count}/{len(outcome.outcomes)}" if outcome.outcomes else "-",
            f"[{STATE_STYLES[state]}]{state.value}[/{STATE_STYLES[state]}]",
        )
    console.print(table)
    console.print(
        f"Published {report.total_published_events}/{report.total_expected_events} events"
        + (f" to {len(report.relays)} relay(s)" if report.relays else "")
    )


def run_publish(
    path: Path,
    settings: Settings,
    relay_config: RelayConfig,
    content_level: int | None = None,
    content_kind: str | None = None,
    relays: str | None = None,
    quorum: int | None = None,
    dry_run: bool = False,
    verify: bool | None = None,
    output_json: bool = False,
) -> int:
    """Publish a document.

    Returns:
        Exit code (0 = report successful, 1 = errors in the report)
    """
    console = Console(stderr=True)
    publisher = DocumentPublisher(settings, relay_config=relay_config)
    report = publisher.publish_document(
        path,
        content_level,
        content_kind,
        relays,
        dry_run,
        quorum=quorum,
        verify=verify,
    )

    if output_json:
        print(json.dumps(report.to_dict(), indent=2))
    elif report.dry_run and report.plan is not None:
        console.print("[bold]Dry run[/bold] - nothing was published")
        console.print(report.plan.summary(), markup=False)
    else:
        _print_report(console, report)

    if not output_json:
        for warning in report.warnings:
            console.print(f"[yellow]warning:[/yellow] {warning}")
        for error in report.errors:
            console.print(f"[red]error:[/red] {error}")
        failed = report.failed_identifiers()
        if failed and not report.dry_run:
            console.print(f"Not durable: {', '.join(failed)}", style="yellow")

    return 0 if report.success else 1
