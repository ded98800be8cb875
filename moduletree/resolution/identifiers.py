"""Identifier classification and canonical keys."""

from __future__ import annotations

import posixpath

from ..nodes import Node


def is_absolute(identifier: str) -> bool:
    return identifier.startswith("/")


def is_relative(identifier: str) -> bool:
    return identifier.startswith(".")


def is_bare(identifier: str) -> bool:
    return not (is_absolute(identifier) or is_relative(identifier))


def split_segments(identifier: str) -> list[str]:
    """Split an identifier into path segments (leading '/' dropped)."""
    if is_absolute(identifier):
        identifier = identifier[1:]
    return identifier.split("/")


def normalize_identifier(from_node: Node, identifier: str) -> str:
    """Canonical key for an identifier requested from ``from_node``.

    Absolute and relative identifiers become normalized absolute paths, so
    that "./a" requested from two directories yields two keys. Bare
    identifiers are returned unchanged.

    Examples:
        from /app/main.js: "./lib/../util" -> "/app/util"
        from /app/main.js: "lodash"        -> "lodash"
    """
    if is_bare(identifier):
        return identifier
    if is_absolute(identifier):
        joined = identifier
    else:
        directory = from_node.enclosing_directory()
        base = directory.identity if directory is not None and directory.identity else ""
        joined = f"{base}/{identifier}"
    normalized = posixpath.normpath(joined)
    # normpath keeps a leading "//"
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized
