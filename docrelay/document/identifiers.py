"""Stable identifier ("d" tag) assignment for section nodes.

The publication base identifier is chosen in this order:

1. ``reuse_identifier`` from metadata, used as given (update/replace an
   earlier publication)
2. ``identifier`` from metadata (static override, no timestamp)
3. the slugified title, suffixed with the creation time unless ``auto_update``
   is set (append a new publication on every run)

The root gets the base identifier; every other node gets the base followed by
the slugs of its title path below the root. In append mode the timestamp goes
last so that all identifiers of one run share it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from ..models import SectionNode, parse_bool

_INVALID = re.compile(r"[^a-z0-9-]+")
_HYPHENS = re.compile(r"-{2,}")


def slugify(text: str) -> str:
    """Lowercase, turn runs of other characters into '-', collapse and trim hyphens."""
    slug = _INVALID.sub("-", text.lower())
    return _HYPHENS.sub("-", slug).strip("-")


@dataclass(frozen=True)
class IdentifierScheme:
    """How identifiers are formed for one compilation."""

    base: str
    suffix: str | None = None  # creation time in append mode
    mode: str = "append"  # "reuse", "static", "update" or "append"

    def root(self) -> str:
        return self._finish(self.base)

    def for_path(self, slugs: list[str]) -> str:
        return self._finish("-".join([self.base, *slugs]))

    def _finish(self, identifier: str) -> str:
        return f"{identifier}-{self.suffix}" if self.suffix else identifier


def identifier_scheme(title: str, metadata: Mapping[str, str], created_at: int) -> IdentifierScheme:
    """Pick the identifier scheme from document metadata."""
    # Kept verbatim: a replacement must carry the earlier d tag exactly
    reuse = metadata.get("reuse_identifier", "").strip()
    if reuse:
        return IdentifierScheme(base=reuse, mode="reuse")
    static = slugify(metadata.get("identifier", ""))
    if static:
        return IdentifierScheme(base=static, mode="static")

    base = slugify(title) or "document"
    if parse_bool(metadata.get("auto_update", "false")):
        return IdentifierScheme(base=base, mode="update")
    return IdentifierScheme(base=base, suffix=str(created_at), mode="append")


def node_slug(node: SectionNode) -> str:
    return slugify(node.title) or f"section-{node.position}"


def assign_identifiers(
    root: SectionNode, metadata: Mapping[str, str], created_at: int
) -> dict[int, str]:
    """Compute the identifier of every node, keyed by node position.

    Two sibling sections with the same title would collide; the later one
    gets its position appended.
    """
    scheme = identifier_scheme(root.title, metadata, created_at)
    identifiers: dict[int, str] = {root.position: scheme.root()}
    seen = {identifiers[root.position]}

    def visit(node: SectionNode, path: list[str]) -> None:
        for child in node.children:
            child_path = [*path, node_slug(child)]
            identifier = scheme.for_path(child_path)
            if identifier in seen:
                child_path[-1] = f"{child_path[-1]}-{child.position}"
                identifier = scheme.for_path(child_path)
            seen.add(identifier)
            identifiers[child.position] = identifier
            visit(child, child_path)

    visit(root, [])
    return identifiers
