"""
Event kind variants.

The set of kinds docrelay emits is closed: one index kind and three content
kinds. Each variant carries only the fields its kind renders as tags, and the
kind number → variant lookup goes through EVENT_KINDS.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar, Literal, Union

from .models import parse_bool, split_list

Role = Literal["content", "index"]

INDEX_KIND = 30040


def _optional_tag(name: str, value: str | None) -> list[list[str]]:
    return [[name, value]] if value else []


def _topic_tags(topics: tuple[str, ...]) -> list[list[str]]:
    return [["t", topic] for topic in topics]


@dataclass(frozen=True)
class LongForm:
    """Long-form article (NIP-23)."""

    kind: ClassVar[int] = 30023
    role: ClassVar[Role] = "content"
    name: ClassVar[str] = "Long-form Content"

    summary: str | None = None
    image: str | None = None
    published_at: str | None = None
    topics: tuple[str, ...] = ()

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> LongForm:
        return cls(
            summary=metadata.get("summary"),
            image=metadata.get("image"),
            published_at=metadata.get("published_at"),
            topics=tuple(split_list(metadata.get("t", ""))),
        )

    def to_tags(self) -> list[list[str]]:
        tags = _optional_tag("summary", self.summary)
        tags += _optional_tag("image", self.image)
        tags += _optional_tag("published_at", self.published_at)
        return tags + _topic_tags(self.topics)


@dataclass(frozen=True)
class PublicationIndex:
    """Publication index (NKBIP-01): a table of contents referencing sections."""

    kind: ClassVar[int] = INDEX_KIND
    role: ClassVar[Role] = "index"
    name: ClassVar[str] = "Publication Index"

    auto_update: bool = False
    publication_type: str | None = None
    authors: tuple[str, ...] = ()
    version: str | None = None
    published_on: str | None = None
    summary: str | None = None
    image: str | None = None
    lang: str | None = None
    topics: tuple[str, ...] = ()

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> PublicationIndex:
        return cls(
            auto_update=parse_bool(metadata.get("auto_update", "false")),
            publication_type=metadata.get("type"),
            authors=tuple(split_list(metadata.get("author", ""), separators=";,")),
            version=metadata.get("version"),
            published_on=metadata.get("published_on"),
            summary=metadata.get("summary"),
            image=metadata.get("image"),
            lang=metadata.get("lang"),
            topics=tuple(split_list(metadata.get("t", ""))),
        )

    def to_tags(self) -> list[list[str]]:
        tags = [["auto-update", "yes" if self.auto_update else "no"]]
        tags += _optional_tag("type", self.publication_type)
        tags += [["author", author] for author in self.authors]
        tags += _optional_tag("version", self.version)
        tags += _optional_tag("published_on", self.published_on)
        tags += _optional_tag("summary", self.summary)
        tags += _optional_tag("image", self.image)
        tags += _optional_tag("l", self.lang)
        return tags + _topic_tags(self.topics)


@dataclass(frozen=True)
class PublicationContent:
    """Publication content section (NKBIP-01): a chapter, episode or zettel."""

    kind: ClassVar[int] = 30041
    role: ClassVar[Role] = "content"
    name: ClassVar[str] = "Publication Content"

    summary: str | None = None
    topics: tuple[str, ...] = ()

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> PublicationContent:
        return cls(
            summary=metadata.get("summary"),
            topics=tuple(split_list(metadata.get("t", ""))),
        )

    def to_tags(self) -> list[list[str]]:
        return _optional_tag("summary", self.summary) + _topic_tags(self.topics)


@dataclass(frozen=True)
class Wiki:
    """Wiki article (NIP-54)."""

    kind: ClassVar[int] = 30818
    role: ClassVar[Role] = "content"
    name: ClassVar[str] = "Wiki Article"

    summary: str | None = None
    topics: tuple[str, ...] = ()

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> Wiki:
        return cls(
            summary=metadata.get("summary"),
            topics=tuple(split_list(metadata.get("t", ""))),
        )

    def to_tags(self) -> list[list[str]]:
        return _optional_tag("summary", self.summary) + _topic_tags(self.topics)


EventVariant = Union[LongForm, PublicationIndex, PublicationContent, Wiki]

# Kind number -> variant class
EVENT_KINDS: dict[int, type[EventVariant]] = {
    LongForm.kind: LongForm,
    PublicationIndex.kind: PublicationIndex,
    PublicationContent.kind: PublicationContent,
    Wiki.kind: Wiki,
}

CONTENT_KIND_ALIASES: dict[str, int] = {
    "30023": LongForm.kind,
    "longform": LongForm.kind,
    "30041": PublicationContent.kind,
    "publication": PublicationContent.kind,
    "30818": Wiki.kind,
    "wiki": Wiki.kind,
}

# Kinds used when probing relays for liveness
PROBE_KINDS: list[int] = [1, LongForm.kind, INDEX_KIND, PublicationContent.kind, Wiki.kind]

_WIKI_INVALID = re.compile(r"[^a-z0-9]+")


def get_variant(kind: int) -> type[EventVariant]:
    """Look up the variant class for a kind number."""
    try:
        return EVENT_KINDS[kind]
    except KeyError:
        supported = ", ".join(str(k) for k in EVENT_KINDS)
        raise ValueError(f"Unsupported event kind {kind}. Supported: {supported}") from None


def resolve_content_kind(value: str | int) -> int:
    """Normalize a content kind given as number or alias to its kind number."""
    normalized = str(value).strip().lower()
    if normalized in CONTENT_KIND_ALIASES:
        return CONTENT_KIND_ALIASES[normalized]
    supported = ", ".join(CONTENT_KIND_ALIASES)
    raise ValueError(f"Unsupported content kind: {value}. Supported: {supported}")


def normalize_wiki_identifier(identifier: str) -> str:
    """Normalize a d-tag for wiki articles: lowercase, other characters become '-'."""
    return _WIKI_INVALID.sub("-", identifier.lower()).strip("-")
