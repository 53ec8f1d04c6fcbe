"""Document parsing: title, metadata block and the section tree.

Two markup dialects are accepted. They differ only in the header marker:
AsciiDoc uses ``=`` and Markdown uses ``#``; the number of leading markers is
the header level.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import frontmatter
import yaml

from ..exceptions import ParseError
from ..models import HEADER_MARKERS, MAX_HEADER_LEVEL, Dialect, Document, SectionNode

logger = logging.getLogger(__name__)

# "== Title", "### Title ###"
HEADER_PATTERN = re.compile(r"^(?P<marks>=+|#+)[ \t]+(?P<title>.*?)[ \t]*$")
# A marker run with no title text
EMPTY_HEADER_PATTERN = re.compile(r"^(=+|#+)[ \t]*$")

# "key: value" metadata line; value may be empty
METADATA_PATTERN = re.compile(r"^(?P<key>[A-Za-z][A-Za-z0-9_-]*):(?:[ \t]+(?P<value>.*))?$")
# AsciiDoc attribute entry ":key: value" (":key!:" unsets)
ATTRIBUTE_PATTERN = re.compile(r"^:(?P<key>[A-Za-z0-9_][A-Za-z0-9_-]*)(?P<unset>!)?:(?:[ \t]+(?P<value>.*))?$")

# AsciiDoc author line: "First [Middle] Last [<email>]" entries separated by ";"
AUTHOR_ENTRY_PATTERN = re.compile(r"^(?P<name>[^\W\d][\w.'\- ]*?)\s*(?:<(?P<email>[^<>\s]+)>)?$")
# AsciiDoc revision line: "v1.0, 2024-01-15: remark" or "v1.0, 2024-01-15, remark"
REVISION_PATTERN = re.compile(
    r"^v?(?P<version>\d[\w.\-]*)(?:,[ \t]*(?P<date>[^,:]+?))?(?:[,:][ \t]*(?P<remark>.+))?$"
)

# Delimited blocks in which header-like lines are body text
MARKDOWN_FENCE = re.compile(r"^(?P<fence>`{3,}|~{3,})")
ASCIIDOC_DELIMITER = re.compile(r"^(?P<fence>([-.=*_+/])\2{3,})[ \t]*$")
FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n.*?\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

# Alternative metadata spellings -> canonical key
METADATA_ALIASES: dict[str, str] = {
    "description": "summary",
    "abstract": "summary",
    "keywords": "t",
    "tags": "t",
    "topics": "t",
    "subject": "t",
    "revnumber": "version",
    "revision": "version",
    "date": "published_on",
    "revdate": "published_on",
    "revision_date": "published_on",
    "publication_date": "published_on",
    "authors": "author",
    "author_email": "email",
    "first_name": "firstname",
    "last_name": "lastname",
    "middle_name": "middlename",
    "author_initials": "authorinitials",
    "relay": "relays",
    "autoupdate": "auto_update",
    "auto-update": "auto_update",
    "doctype": "type",
    "document_type": "type",
    "language": "lang",
    "reuse-identifier": "reuse_identifier",
    "reuse_d_tag": "reuse_identifier",
    "reuse-d-tag": "reuse_identifier",
    "d-tag": "identifier",
    "d_tag": "identifier",
    "dtag": "identifier",
    "content-level": "content_level",
    "contentlevel": "content_level",
    "content-kind": "content_kind",
    "contentkind": "content_kind",
    "table_of_contents": "toc",
    "toc_levels": "toclevels",
    "section_anchors": "sectanchors",
    "section_links": "sectlinks",
    "images_dir": "imagesdir",
    "source_highlighter": "source-highlighter",
    "compat_mode": "compat-mode",
}


def normalize_key(key: str) -> str:
    """Map a metadata key to its canonical spelling."""
    lowered = key.strip().lower()
    return METADATA_ALIASES.get(lowered, lowered)


def header_level(line: str, dialect: Dialect) -> tuple[int, str] | None:
    """Return (level, title) if the line is a header in this dialect, else None."""
    match = HEADER_PATTERN.match(line.strip())
    if not match:
        return None
    marks = match.group("marks")
    if marks[0] != HEADER_MARKERS[dialect] or len(marks) > MAX_HEADER_LEVEL:
        return None
    title = match.group("title")
    if dialect == "markdown":
        # Closing sequence: "## Title ##"
        title = re.sub(r"[ \t]+#+$", "", title)
    return len(marks), title.strip()


def detect_dialect(text: str) -> Dialect:
    """Guess the dialect from the first header-like line (AsciiDoc if none)."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("#") and (HEADER_PATTERN.match(stripped) or EMPTY_HEADER_PATTERN.match(stripped)):
            return "markdown"
        if stripped.startswith("=") and (HEADER_PATTERN.match(stripped) or EMPTY_HEADER_PATTERN.match(stripped)):
            return "asciidoc"
    return "asciidoc"


def parse_author_line(line: str) -> dict[str, str] | None:
    """Parse an AsciiDoc author line.

    Returns author (", "-joined names), email, firstname, middlename and
    lastname of the first author, or None if the line is not an author line.
    """
    names: list[str] = []
    first: dict[str, str] = {}
    for entry in line.split(";"):
        match = AUTHOR_ENTRY_PATTERN.match(entry.strip())
        if not match:
            return None
        name = " ".join(match.group("name").split())
        names.append(name)
        if not first:
            parts = name.split(" ")
            first["firstname"] = parts[0]
            if len(parts) > 1:
                first["lastname"] = parts[-1]
            if len(parts) > 2:
                first["middlename"] = " ".join(parts[1:-1])
            if match.group("email"):
                first["email"] = match.group("email")
    if not names:
        return None
    return {"author": ", ".join(names), **first}


def parse_revision_line(line: str) -> dict[str, str] | None:
    """Parse an AsciiDoc revision line into version, published_on and revremark."""
    match = REVISION_PATTERN.match(line.strip())
    if not match:
        return None
    result = {"version": match.group("version")}
    if match.group("date"):
        result["published_on"] = match.group("date").strip()
    if match.group("remark"):
        result["revremark"] = match.group("remark").strip()
    return result


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_stringify(v) for v in value)
    return str(value)


def split_front_matter(text: str) -> tuple[dict[str, str], str]:
    """Split optional YAML front matter off the text.

    Returns normalized metadata and the remaining text.
    """
    if not FRONT_MATTER.match(text):
        return {}, text
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise ParseError(f"invalid front matter: {e}", line=1) from e
    metadata = {normalize_key(str(k)): _stringify(v) for k, v in post.metadata.items() if v is not None}
    return metadata, post.content


@dataclass
class _Draft:
    """Mutable section used while walking the lines."""

    level: int
    title: str
    position: int
    line: int | None
    lines: list[str] = field(default_factory=list)
    children: list["_Draft"] = field(default_factory=list)

    def freeze(self) -> SectionNode:
        return SectionNode(
            level=self.level,
            title=self.title,
            content="\n".join(self.lines).strip(),
            children=tuple(child.freeze() for child in self.children),
            position=self.position,
            line=self.line,
        )


class _FenceTracker:
    """Tracks whether the current line sits inside a delimited block."""

    def __init__(self, dialect: Dialect):
        self.pattern = MARKDOWN_FENCE if dialect == "markdown" else ASCIIDOC_DELIMITER
        self.open_fence: str | None = None

    def update(self, line: str) -> bool:
        """Feed one line; return True if it is body text of (or delimits) a block."""
        match = self.pattern.match(line.strip())
        if self.open_fence is None:
            if match:
                self.open_fence = match.group("fence")
                return True
            return False
        if match and match.group("fence").startswith(self.open_fence[0]) and len(match.group("fence")) >= len(self.open_fence):
            self.open_fence = None
        return True


def _read_header_block(
    lines: list[str], start: int, dialect: Dialect
) -> tuple[dict[str, str], int]:
    """Read the metadata block following the title.

    Returns the metadata and the index of the first body line.
    """
    metadata: dict[str, str] = {}
    free_lines = 0  # AsciiDoc author and revision lines
    i = start
    while i < len(lines):
        stripped = lines[i].strip()
        if not stripped:
            break
        if dialect == "asciidoc" and stripped.startswith("//"):
            i += 1
            continue

        attribute = ATTRIBUTE_PATTERN.match(stripped) if dialect == "asciidoc" else None
        if attribute:
            key = normalize_key(attribute.group("key"))
            if attribute.group("unset"):
                metadata.pop(key, None)
            else:
                metadata[key] = (attribute.group("value") or "true").strip()
            i += 1
            continue

        entry = METADATA_PATTERN.match(stripped)
        if entry:
            metadata[normalize_key(entry.group("key"))] = (entry.group("value") or "").strip()
            i += 1
            continue

        if dialect == "asciidoc" and free_lines == 0:
            author = parse_author_line(stripped)
            if author:
                metadata.update({k: v for k, v in author.items() if k not in metadata})
                free_lines += 1
                i += 1
                continue
        if dialect == "asciidoc" and free_lines == 1:
            revision = parse_revision_line(stripped)
            if revision:
                metadata.update({k: v for k, v in revision.items() if k not in metadata})
                free_lines += 1
                i += 1
                continue
        # Anything else starts the body
        break
    return metadata, i


def parse_document(text: str, dialect: Dialect | None = None) -> Document:
    """Parse raw text into a Document with a section tree.

    Args:
        text: Document source
        dialect: "asciidoc" or "markdown"; detected from the first header if omitted

    Returns:
        Parsed, immutable Document

    Raises:
        ParseError: missing or empty title, or a second level-1 header
    """
    front_metadata, text = split_front_matter(text)
    dialect = dialect or detect_dialect(text)
    if dialect not in HEADER_MARKERS:
        raise ValueError(f"Unsupported dialect: {dialect}")

    lines = text.splitlines()
    warnings: list[str] = []

    # Title: first meaningful line must be a level-1 header
    title_index = None
    title = ""
    for i, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or (dialect == "asciidoc" and stripped.startswith("//")):
            continue
        if EMPTY_HEADER_PATTERN.match(stripped) and stripped[0] == HEADER_MARKERS[dialect]:
            raise ParseError("document title is empty", line=i + 1)
        parsed = header_level(stripped, dialect)
        if parsed is None or parsed[0] != 1:
            raise ParseError(
                f"document must start with a level-1 title ('{HEADER_MARKERS[dialect]} Title')",
                line=i + 1,
            )
        if not parsed[1]:
            raise ParseError("document title is empty", line=i + 1)
        title_index, title = i, parsed[1]
        break
    if title_index is None:
        raise ParseError("document has no title")

    header_metadata, body_start = _read_header_block(lines, title_index + 1, dialect)
    metadata = {**front_metadata, **header_metadata}

    root = _Draft(level=1, title=title, position=0, line=title_index + 1)
    stack = [root]
    fences = _FenceTracker(dialect)
    position = 0

    for i in range(body_start, len(lines)):
        line = lines[i]
        if fences.update(line):
            stack[-1].lines.append(line)
            continue

        parsed = header_level(line, dialect)
        if parsed is None:
            stack[-1].lines.append(line)
            continue

        level, header_title = parsed
        if level == 1:
            raise ParseError(f"second level-1 header '{header_title}'; a document has exactly one title", line=i + 1)

        while stack[-1].level >= level:
            stack.pop()
        parent = stack[-1]
        if level > parent.level + 1:
            message = (
                f"line {i + 1}: header '{header_title}' (level {level}) skips levels "
                f"under '{parent.title}' (level {parent.level}); kept as declared"
            )
            logger.warning(message)
            warnings.append(message)

        position += 1
        node = _Draft(level=level, title=header_title, position=position, line=i + 1)
        parent.children.append(node)
        stack.append(node)

    if fences.open_fence is not None:
        warnings.append(f"unterminated delimited block '{fences.open_fence}'")

    return Document(
        title=title,
        metadata=metadata,
        root=root.freeze(),
        dialect=dialect,
        warnings=tuple(warnings),
    )


def render_section(node: SectionNode, dialect: Dialect, *, include_header: bool = False) -> str:
    """Render a section and its descendants back into markup."""
    parts: list[str] = []
    if include_header:
        parts.append(f"{HEADER_MARKERS[dialect] * node.level} {node.title}")
    if node.content:
        parts.append(node.content)
    for child in node.children:
        parts.append(render_section(child, dialect, include_header=True))
    return "\n\n".join(parts)
