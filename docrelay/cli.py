"""CLI entrypoint for docrelay."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import load_relay_config, load_settings
from .exceptions import DocrelayError
from .kinds import CONTENT_KIND_ALIASES


def _setup_logging(verbose: bool) -> None:
    """Route package logs to stderr through rich."""
    logger = logging.getLogger("docrelay")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(__version__, prog_name="docrelay")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=True, path_type=Path),
    default=None,
    help="Settings file (docrelay.toml or pyproject.toml); defaults to the current directory",
)
@click.option(
    "--relay-config",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Relay category file (YAML); overrides relay_config from settings",
)
@click.option("--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, relay_config: Path | None, verbose: bool) -> None:
    """docrelay - compile documents into Nostr events and publish them to relays.

    Parse AsciiDoc or Markdown documents, plan the resulting publication,
    and disseminate it to relays with retry and quorum.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        settings = load_settings(config_path)
        ctx.obj["settings"] = settings
        ctx.obj["relay_config"] = load_relay_config(relay_config or settings.relay_config)
    except DocrelayError as e:
        raise click.ClickException(str(e)) from e


content_level_option = click.option(
    "--content-level",
    "-l",
    type=click.IntRange(0, 6),
    default=None,
    help="Header level at which sections become content events (0 = single article)",
)
content_kind_option = click.option(
    "--content-kind",
    "-k",
    type=click.Choice(list(CONTENT_KIND_ALIASES), case_sensitive=False),
    default=None,
    help="Kind of content events",
)
json_option = click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
document_argument = click.argument(
    "document", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)


@cli.command()
@document_argument
@content_level_option
@content_kind_option
@json_option
@click.pass_context
def parse(
    ctx: click.Context,
    document: Path,
    content_level: int | None,
    content_kind: str | None,
    output_json: bool,
) -> None:
    """Compile a document and show its section tree and publish plan.

    Nothing is signed or sent.

    Examples:

        docrelay parse guide.adoc

        docrelay parse notes.md --content-level 2 --json
    """
    from .commands.publish import run_parse

    try:
        exit_code = run_parse(
            document, ctx.obj["settings"], ctx.obj["relay_config"], content_level, content_kind, output_json
        )
    except DocrelayError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(exit_code)


@cli.command()
@document_argument
@content_level_option
@content_kind_option
@click.option("--relays", "-r", default=None, help="Relay URL(s) or category name; overrides document metadata")
@click.option("--quorum", "-q", type=click.IntRange(min=1), default=None, help="Relays that must confirm each event")
@click.option("--dry-run", is_flag=True, help="Plan only; no network and no key access")
@click.option("--verify/--no-verify", default=None, help="Query relays after publishing to confirm the events")
@json_option
@click.pass_context
def publish(
    ctx: click.Context,
    document: Path,
    content_level: int | None,
    content_kind: str | None,
    relays: str | None,
    quorum: int | None,
    dry_run: bool,
    verify: bool | None,
    output_json: bool,
) -> None:
    """Publish a document to relays.

    The signing key is read from the key reference in settings
    (default env:NOSTR_BOT_KEY).

    Examples:

        docrelay publish guide.adoc --dry-run

        docrelay publish guide.adoc --relays favorite-relays --quorum 2
    """
    from .commands.publish import run_publish

    try:
        exit_code = run_publish(
            document,
            ctx.obj["settings"],
            ctx.obj["relay_config"],
            content_level=content_level,
            content_kind=content_kind,
            relays=relays,
            quorum=quorum,
            dry_run=dry_run,
            verify=verify,
            output_json=output_json,
        )
    except DocrelayError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(exit_code)


@cli.command()
@click.argument("spec", required=False)
@click.pass_context
def relays(ctx: click.Context, spec: str | None) -> None:
    """Probe relays: a URL, a category name, or all configured relays."""
    from .commands.relays import run_relays

    sys.exit(run_relays(ctx.obj["settings"], ctx.obj["relay_config"], spec))


@cli.command()
@click.option("--kind", "kinds", type=int, multiple=True, help="Event kind (repeatable)")
@click.option("--author", "authors", multiple=True, help="Author public key, hex (repeatable)")
@click.option("--identifier", "-d", "identifiers", multiple=True, help="d-tag identifier (repeatable)")
@click.option("--id", "ids", multiple=True, help="Event id (repeatable)")
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Maximum events per relay")
@click.option("--relays", "-r", default=None, help="Relay URL(s) or category name")
@click.pass_context
def query(
    ctx: click.Context,
    kinds: tuple[int, ...],
    authors: tuple[str, ...],
    identifiers: tuple[str, ...],
    ids: tuple[str, ...],
    limit: int | None,
    relays: str | None,
) -> None:
    """Query relays and print unique events as JSON lines."""
    from .commands.relays import build_filter, run_query

    query_filter = build_filter(kinds, authors, identifiers, ids, limit)
    if not query_filter:
        raise click.UsageError("Give at least one of --kind, --author, --identifier, --id or --limit")
    sys.exit(run_query(ctx.obj["settings"], ctx.obj["relay_config"], query_filter, relays))


if __name__ == "__main__":
    cli()
