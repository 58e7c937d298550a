"""Submodule containing the Markdown layout document parser and serializer."""

from .parser import LayoutParser, ParseError, ParseState, parse, parse_cell
from .serializer import format_cell, serialize, write_document

__all__ = [
    "LayoutParser",
    "ParseError",
    "ParseState",
    "parse",
    "parse_cell",
    "format_cell",
    "serialize",
    "write_document",
]
