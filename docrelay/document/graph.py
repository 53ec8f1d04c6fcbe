"""Event graph construction: section tree -> content and index events."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, replace

from ..exceptions import ConfigError
from ..kinds import (
    INDEX_KIND,
    EventVariant,
    PublicationIndex,
    Wiki,
    get_variant,
    normalize_wiki_identifier,
    resolve_content_kind,
)
from ..models import MAX_HEADER_LEVEL, Document, EventRecord, Reference, SectionNode, parse_bool
from .identifiers import assign_identifiers
from .parser import render_section

logger = logging.getLogger(__name__)

RecordKey = tuple[int, str]  # (kind, identifier)

DEFAULT_CONTENT_KINDS: dict[str, int] = {
    "asciidoc": 30041,
    "markdown": 30023,
}
DEFAULT_CONTENT_LEVEL = 0


@dataclass
class EventGraph:
    """Compiled events with index -> child reference edges."""

    records: list[EventRecord] = field(default_factory=list)  # document order
    root_identifier: str = ""
    nodes: dict[RecordKey, EventRecord] = field(default_factory=dict)
    edges: dict[RecordKey, list[RecordKey]] = field(
        default_factory=lambda: defaultdict(list)
    )  # index -> referenced children, in reference order
    reverse_edges: dict[RecordKey, list[RecordKey]] = field(
        default_factory=lambda: defaultdict(list)
    )  # child -> referencing indexes
    tree: SectionNode | None = None  # section tree annotated with identifier/kind
    content_level: int = DEFAULT_CONTENT_LEVEL
    content_kind: int = 30041
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[EventRecord], root_identifier: str = "", **kwargs) -> EventGraph:
        """Build the graph from records; edges come from each record's references."""
        graph = cls(records=list(records), root_identifier=root_identifier, **kwargs)
        for record in records:
            graph.nodes.setdefault(record.key, record)
        for record in records:
            for ref in record.references:
                dst = (ref.kind, ref.identifier)
                graph.edges[record.key].append(dst)
                graph.reverse_edges[dst].append(record.key)
        return graph

    @property
    def root(self) -> EventRecord | None:
        for record in self.records:
            if record.is_root:
                return record
        return None

    def find_cycles(self) -> list[list[RecordKey]]:
        """Find reference cycles using Tarjan's strongly connected components.

        Only returns SCCs with more than one node, plus self references.
        """
        index_counter = [0]
        stack: list[RecordKey] = []
        lowlinks: dict[RecordKey, int] = {}
        index: dict[RecordKey, int] = {}
        on_stack: dict[RecordKey, bool] = {}
        sccs: list[list[RecordKey]] = []

        def strongconnect(node: RecordKey) -> None:
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            for dep in self.edges.get(node, []):
                if dep not in self.nodes:
                    continue  # reported separately by the planner
                if dep not in index:
                    strongconnect(dep)
                    lowlinks[node] = min(lowlinks[node], lowlinks[dep])
                elif on_stack.get(dep, False):
                    lowlinks[node] = min(lowlinks[node], index[dep])

            if lowlinks[node] == index[node]:
                scc = []
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.append(w)
                    if w == node:
                        break
                if len(scc) > 1 or node in self.edges.get(node, []):
                    sccs.append(list(reversed(scc)))

        for node in self.nodes:
            if node not in index:
                strongconnect(node)

        return sccs


def _parse_level(value: int | str, source: str) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{source}: content level must be an integer 0..{MAX_HEADER_LEVEL}, got {value!r}") from None
    if not 0 <= level <= MAX_HEADER_LEVEL:
        raise ConfigError(f"{source}: content level must be 0..{MAX_HEADER_LEVEL}, got {level}")
    return level


def _parse_kind(value: int | str, source: str) -> int:
    try:
        return resolve_content_kind(value)
    except ValueError as e:
        raise ConfigError(f"{source}: {e}") from None


def resolve_compile_options(
    document: Document,
    content_level: int | str | None = None,
    content_kind: int | str | None = None,
) -> tuple[int, int]:
    """Resolve (content level, content kind).

    Explicit arguments win over document metadata, which wins over the
    dialect default.
    """
    if content_level is not None:
        level = _parse_level(content_level, "content_level")
    elif document.metadata.get("content_level"):
        level = _parse_level(document.metadata["content_level"], "metadata content_level")
    else:
        level = DEFAULT_CONTENT_LEVEL

    if content_kind is not None:
        kind = _parse_kind(content_kind, "content_kind")
    elif document.metadata.get("content_kind"):
        kind = _parse_kind(document.metadata["content_kind"], "metadata content_kind")
    else:
        kind = DEFAULT_CONTENT_KINDS[document.dialect]
    return level, kind


def is_content_node(node: SectionNode, content_level: int, *, is_root: bool = False) -> bool:
    """Content if at or below the threshold level or childless; the root only if childless."""
    if node.is_leaf:
        return True
    if is_root:
        return False
    return node.level >= content_level


def _annotate(node: SectionNode, annotations: dict[int, tuple[str, int, bool]]) -> SectionNode:
    identifier, kind, content = annotations[node.position]
    return replace(
        node,
        identifier=identifier,
        kind=kind,
        is_content=content,
        children=tuple(_annotate(child, annotations) for child in node.children),
    )


def build_event_graph(
    document: Document,
    content_level: int | str | None = None,
    content_kind: int | str | None = None,
    *,
    author: str = "",
    created_at: int | None = None,
) -> EventGraph:
    """Compile a parsed document into an event graph.

    Args:
        document: Parsed document
        content_level: Threshold level L (0..6); 0 compiles the whole document
            into one content event
        content_kind: Content kind number or alias
        author: Signer public key (hex) used in references
        created_at: Unix time for all records; defaults to now

    Returns:
        EventGraph with one record per section node
    """
    level, kind = resolve_compile_options(document, content_level, content_kind)
    created_at = int(time.time()) if created_at is None else created_at
    content_cls = get_variant(kind)
    metadata = document.metadata
    root = document.root

    identifiers = assign_identifiers(root, metadata, created_at)
    if kind == Wiki.kind:
        identifiers = {pos: normalize_wiki_identifier(i) for pos, i in identifiers.items()}

    if level == 0 or document.is_simple_article:
        record = EventRecord(
            variant=content_cls.from_metadata(metadata),
            identifier=identifiers[root.position],
            title=document.title,
            body=render_section(root, document.dialect),
            created_at=created_at,
            level=root.level,
            position=root.position,
            is_root=True,
        )
        logger.debug("Compiled %r as a single %d event", document.title, kind)
        return EventGraph.from_records(
            [record],
            root_identifier=record.identifier,
            tree=_annotate_flat(root, record.identifier, kind),
            content_level=level,
            content_kind=kind,
        )

    auto_update = parse_bool(metadata.get("auto_update", "false"))
    annotations: dict[int, tuple[str, int, bool]] = {}
    warnings: list[str] = []

    for node in root.walk():
        is_root = node is root
        content = is_content_node(node, level, is_root=is_root)
        annotations[node.position] = (identifiers[node.position], kind if content else INDEX_KIND, content)
        if content and node.children:
            message = (
                f"section '{node.title}' (level {node.level}) is a content event; its "
                f"{len(node.children)} subsection(s) are published as unreferenced events"
            )
            logger.warning(message)
            warnings.append(message)

    records: list[EventRecord] = []
    for node in root.walk():
        identifier, node_kind, content = annotations[node.position]
        is_root = node is root
        variant: EventVariant
        if content:
            variant = content_cls.from_metadata(metadata) if is_root else content_cls()
            references: tuple[Reference, ...] = ()
            body = node.content
        else:
            variant = (
                PublicationIndex.from_metadata(metadata)
                if is_root
                else PublicationIndex(auto_update=auto_update)
            )
            references = tuple(
                Reference(kind=annotations[c.position][1], author=author, identifier=annotations[c.position][0])
                for c in node.children
            )
            body = ""
            if node.content:
                message = f"index section '{node.title}' has preamble text that is not published"
                logger.warning(message)
                warnings.append(message)
        records.append(
            EventRecord(
                variant=variant,
                identifier=identifier,
                title=node.title,
                body=body,
                created_at=created_at,
                references=references,
                level=node.level,
                position=node.position,
                is_root=is_root,
            )
        )

    logger.debug(
        "Compiled %r into %d events (level %d, kind %d)", document.title, len(records), level, kind
    )
    return EventGraph.from_records(
        records,
        root_identifier=annotations[root.position][0],
        tree=_annotate(root, annotations),
        content_level=level,
        content_kind=kind,
        warnings=warnings,
    )


def _annotate_flat(root: SectionNode, identifier: str, kind: int) -> SectionNode:
    """Annotation for simple-article mode: everything folds into the root event."""
    annotations = {node.position: (identifier, kind, True) for node in root.walk()}
    return _annotate(root, annotations)
