"""Document loading from disk."""

from __future__ import annotations

from pathlib import Path

from ..exceptions import ParseError
from ..models import Dialect, Document
from .parser import parse_document

# File extension -> dialect
DIALECT_BY_SUFFIX: dict[str, Dialect] = {
    ".adoc": "asciidoc",
    ".asciidoc": "asciidoc",
    ".asc": "asciidoc",
    ".md": "markdown",
    ".markdown": "markdown",
}


def dialect_for_path(path: Path) -> Dialect:
    """Pick the dialect from the file extension."""
    try:
        return DIALECT_BY_SUFFIX[path.suffix.lower()]
    except KeyError:
        supported = ", ".join(DIALECT_BY_SUFFIX)
        raise ParseError(f"{path.name}: unsupported file type (expected one of {supported})") from None


def load_document(path: Path, dialect: Dialect | None = None) -> Document:
    """Read and parse a document file.

    Raises:
        ParseError: unreadable file, unsupported extension or invalid document
    """
    dialect = dialect or dialect_for_path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(f"cannot read {path}: {e}") from e
    return parse_document(text, dialect)
