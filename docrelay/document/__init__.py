"""Document parsing and compilation into events."""

from .graph import EventGraph, build_event_graph, resolve_compile_options
from .identifiers import assign_identifiers, slugify
from .loader import load_document
from .parser import parse_document, render_section

__all__ = [
    "EventGraph",
    "build_event_graph",
    "resolve_compile_options",
    "assign_identifiers",
    "slugify",
    "load_document",
    "parse_document",
    "render_section",
]
