"""Data models for parsed documents and compiled events."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from .kinds import EventVariant

# Supported markup dialects and their header marker character
Dialect = Literal["asciidoc", "markdown"]

HEADER_MARKERS: dict[str, str] = {
    "asciidoc": "=",
    "markdown": "#",
}

MAX_HEADER_LEVEL = 6


@dataclass(frozen=True)
class SectionNode:
    """A header and everything under it up to the next header of equal or lower level."""

    level: int
    title: str
    content: str  # own text before the first child header
    children: tuple[SectionNode, ...] = ()
    position: int = 0  # document order, root is 0
    line: int | None = None  # 1-based source line of the header
    # Filled in by the event graph builder
    identifier: str | None = None
    kind: int | None = None
    is_content: bool | None = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self) -> Iterator[SectionNode]:
        """Yield this node and all descendants in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def leaves(self) -> list[SectionNode]:
        return [node for node in self.walk() if node.is_leaf]


@dataclass(frozen=True)
class Document:
    """A parsed document. Immutable once parsed."""

    title: str
    metadata: Mapping[str, str]
    root: SectionNode
    dialect: Dialect = "asciidoc"
    warnings: tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_simple_article(self) -> bool:
        """True when the document has no sub-headers."""
        return self.root.is_leaf


@dataclass(frozen=True)
class Reference:
    """An addressable pointer from an index event to another event."""

    kind: int
    author: str  # hex public key of the signer
    identifier: str

    @property
    def address(self) -> str:
        return f"{self.kind}:{self.author}:{self.identifier}"


@dataclass(frozen=True)
class EventRecord:
    """One unsigned event compiled from a section node."""

    variant: EventVariant
    identifier: str  # "d" tag
    title: str
    body: str
    created_at: int
    references: tuple[Reference, ...] = ()
    level: int = 1
    position: int = 0
    is_root: bool = False

    @property
    def kind(self) -> int:
        return self.variant.kind

    @property
    def is_index(self) -> bool:
        return self.variant.role == "index"

    @property
    def key(self) -> tuple[int, str]:
        """(kind, identifier) pair; unique within one author's graph."""
        return (self.kind, self.identifier)

    def summary(self) -> str:
        role = "index" if self.is_index else "content"
        refs = f", {len(self.references)} refs" if self.references else ""
        return f"[{self.kind} {role}] {self.title} ({self.identifier}{refs})"


def parse_bool(value: str | bool, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off"):
        return False
    return default


def split_list(value: str, separators: str = ",") -> list[str]:
    """Split a comma separated metadata value, dropping empty entries."""
    if not value:
        return []
    parts = [value]
    for sep in separators:
        parts = [piece for part in parts for piece in part.split(sep)]
    return [p.strip() for p in parts if p.strip()]
