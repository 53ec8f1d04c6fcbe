"""Error taxonomy for docrelay.

Compiler errors (parse, plan, config, signing) are fatal and raised before any
network activity. Relay errors are per attempt or per event and are absorbed
into publish outcomes by the dissemination engine and the publisher.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .relays.engine import EventOutcome


class DocrelayError(Exception):
    """Base class for every error raised by docrelay."""


class ParseError(DocrelayError):
    """The document cannot be turned into a section tree."""

    def __init__(self, message: str, *, line: int | None = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class PlanError(DocrelayError):
    """The event graph cannot be linearized into a publish plan."""


class ConfigError(DocrelayError):
    """Settings or relay configuration hold an invalid value."""


class SigningError(DocrelayError):
    """No usable signing key could be resolved."""


class NoReachableRelaysError(DocrelayError):
    """Neither the requested relays nor the default relay answered a probe."""

    def __init__(self, candidates: list[str], default_relay: str):
        tried = ", ".join(candidates) if candidates else "(none)"
        super().__init__(
            f"No reachable relays (tried: {tried}; default relay {default_relay} also failed)"
        )
        self.candidates = list(candidates)
        self.default_relay = default_relay


class RelayAttemptError(DocrelayError):
    """A single connect/publish/query attempt against one relay failed."""

    def __init__(self, relay_url: str, reason: str):
        super().__init__(f"{relay_url}: {reason}")
        self.relay_url = relay_url
        self.reason = reason


class QuorumNotMetError(DocrelayError):
    """Fewer relays than the quorum acknowledged an event."""

    def __init__(self, outcome: EventOutcome):
        failed = outcome.failed_relays()
        reasons = "; ".join(f"{url} ({reason})" for url, reason in failed.items())
        super().__init__(
            f"Event {outcome.identifier!r} reached {outcome.success_count}/{outcome.quorum} "
            f"required relays. Failed: {reasons or 'none'}"
        )
        self.outcome = outcome

    @property
    def failed_relays(self) -> dict[str, str]:
        return self.outcome.failed_relays()


class PublishTimeoutError(DocrelayError, TimeoutError):
    """The global run timeout expired before the plan was fully executed."""

    def __init__(self, timeout: float, unexecuted: list[str]):
        super().__init__(
            f"Run timeout of {timeout:g}s expired; {len(unexecuted)} event(s) not published: "
            + ", ".join(unexecuted)
        )
        self.timeout = timeout
        self.unexecuted = list(unexecuted)
