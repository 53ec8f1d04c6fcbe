"""
Publish planning.

Compilation is the diagnostic phase and publication the action phase. A plan
is computed without touching the network, so a dry run is simply a plan that
is never executed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .document.graph import EventGraph, RecordKey
from .exceptions import PlanError
from .models import EventRecord


@dataclass
class BasePlan(ABC):
    """Base class for operation plans (diagnostic output)."""

    @abstractmethod
    def summary(self) -> str:
        """Human-readable summary of what would be done."""
        ...


@dataclass
class BaseResult:
    """Base class for operation results (action output)."""

    success: bool = True
    error: str | None = None


@dataclass
class PublishPlan(BasePlan):
    """Events in publish order: every referenced child precedes its index."""

    title: str
    items: list[EventRecord] = field(default_factory=list)
    layers: list[list[EventRecord]] = field(default_factory=list)
    content_level: int = 0
    content_kind: int = 30041
    warnings: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def root(self) -> EventRecord | None:
        for record in self.items:
            if record.is_root:
                return record
        return None

    def identifiers(self) -> list[str]:
        return [record.identifier for record in self.items]

    def summary(self) -> str:
        lines = [
            f"Publish Plan: {self.title}",
            f"  Events: {len(self.items)} "
            f"({sum(1 for r in self.items if r.is_index)} index, "
            f"{sum(1 for r in self.items if not r.is_index)} content)",
            f"  Content level: {self.content_level}, content kind: {self.content_kind}",
        ]
        for step, record in enumerate(self.items, 1):
            lines.append(f"  {step:>3}. {record.summary()}")
        for warning in self.warnings:
            lines.append(f"  [WARNING] {warning}")
        return "\n".join(lines)

    def to_dict(self) -> list[dict]:
        return [
            {
                "kind": record.kind,
                "identifier": record.identifier,
                "title": record.title,
                "references": [ref.address for ref in record.references],
            }
            for record in self.items
        ]


def _check_graph(graph: EventGraph) -> None:
    seen: set[RecordKey] = set()
    for record in graph.records:
        if record.key in seen:
            raise PlanError(f"duplicate event {record.kind}:{record.identifier}")
        seen.add(record.key)

    for src, dsts in graph.edges.items():
        for dst in dsts:
            if dst not in graph.nodes:
                raise PlanError(
                    f"event {src[0]}:{src[1]} references {dst[0]}:{dst[1]}, which is not in the graph"
                )

    cycles = graph.find_cycles()
    if cycles:
        path = " -> ".join(identifier for _, identifier in cycles[0] + cycles[0][:1])
        raise PlanError(f"reference cycle: {path}")


def plan_publication(graph: EventGraph, title: str | None = None) -> PublishPlan:
    """Linearize an event graph into publish order.

    Uses Kahn's algorithm in layers: each layer holds the records whose
    referenced children are all in earlier layers, in document order.

    Raises:
        PlanError: duplicate events, dangling references or a reference cycle
    """
    _check_graph(graph)

    # Number of distinct children each record still waits for
    pending = {key: len(set(graph.edges.get(key, []))) for key in graph.nodes}
    order = {record.key: i for i, record in enumerate(graph.records)}

    layers: list[list[EventRecord]] = []
    ready = [key for key in graph.nodes if pending[key] == 0]
    placed: set[RecordKey] = set()
    while ready:
        ready.sort(key=order.__getitem__)
        layers.append([graph.nodes[key] for key in ready])
        placed.update(ready)
        next_ready = []
        for key in ready:
            for parent in set(graph.reverse_edges.get(key, [])):
                if parent in placed or parent not in pending:
                    continue
                pending[parent] -= 1
                if pending[parent] == 0:
                    next_ready.append(parent)
        ready = next_ready

    if len(placed) != len(graph.nodes):
        # find_cycles already rejects cycles; this guards hand-built graphs
        stuck = [key[1] for key in graph.nodes if key not in placed]
        raise PlanError(f"could not order events: {', '.join(stuck)}")

    root = graph.root
    return PublishPlan(
        title=title or (root.title if root else graph.root_identifier),
        items=[record for layer in layers for record in layer],
        layers=layers,
        content_level=graph.content_level,
        content_kind=graph.content_kind,
        warnings=list(graph.warnings),
    )
