"""Identifier resolution over the module tree.

Absolute, relative, and bare identifiers are resolved to a concrete
unit node, following extensions, package manifests, aliases, and
ancestor dependency directories.
"""

from .identifiers import is_absolute
from .identifiers import is_bare
from .identifiers import is_relative
from .identifiers import normalize_identifier
from .resolver import Resolver

__all__ = [
    "Resolver",
    "is_absolute",
    "is_relative",
    "is_bare",
    "normalize_identifier",
]
