"""Tree node model.

A Node is one entry of the virtual module tree: a directory, a loadable
unit (factory or stub), an alias, or a placeholder whose contents have
not been installed yet.

Fragments passed to install() are normalized into a closed set of content
types before they touch the tree:

    Mapping            -> Directory
    str                -> Alias
    callable           -> Factory (deps from an optional ``deps`` attribute)
    list / tuple       -> Factory or Stub (strings are deps, the callable is
                          the factory, mappings form the stub record)

A node may point at a parent that does not list it among its children.
Queued entry points use this: they need a directory to resolve relative
identifiers from, without showing up in that directory's listing.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Callable
from collections.abc import Iterator
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any

from .config import InstallerOptions
from .errors import InvalidFragmentError

if TYPE_CHECKING:
    from .evaluation import Module

logger = logging.getLogger(__name__)

FactoryFunc = Callable[..., Any]


@dataclass
class Directory:
    """Directory contents: local name -> child Node."""

    children: dict[str, Node] = field(default_factory=dict)


@dataclass
class Factory:
    """A loadable unit with declared static dependencies.

    ``pending`` starts as a copy of ``deps`` and shrinks as the readiness
    engine confirms dependencies; ``deps`` never changes.
    """

    func: FactoryFunc
    deps: tuple[str, ...] = ()
    pending: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.pending:
            self.pending = list(self.deps)


@dataclass
class Alias:
    """An identifier resolved relative to the alias node's own location."""

    target: str


@dataclass
class Stub:
    """Temporary export record standing in for a unit that has not been fetched."""

    record: dict[str, Any] = field(default_factory=dict)
    deps: tuple[str, ...] = ()


Contents = Directory | Factory | Alias | Stub


class ReadyState(Enum):
    """Per-node readiness bookkeeping.

    IN_PROGRESS marks a unit whose dependency list is being expanded; a
    re-entrant check on such a unit answers True (optimistic cycle break).
    """

    UNKNOWN = "unknown"
    IN_PROGRESS = "in_progress"


class Node:
    """Directory, unit, alias, or placeholder in the module tree."""

    __slots__ = ("name", "contents", "options", "ready_cache", "ready_state", "module", "_parent", "__weakref__")

    def __init__(
        self,
        parent: Node | None = None,
        name: str | None = None,
        options: InstallerOptions | None = None,
    ):
        self._parent = weakref.ref(parent) if parent is not None else None
        self.name = name
        self.contents: Contents | None = None
        self.options = options
        self.ready_cache: dict[str, bool] | None = None
        self.ready_state = ReadyState.UNKNOWN
        self.module: Module | None = None

    @property
    def parent(self) -> Node | None:
        return self._parent() if self._parent is not None else None

    @property
    def identity(self) -> str | None:
        """Path-like identity; "" for the root, None for anonymous nodes."""
        parent = self.parent
        if parent is None:
            return "" if self.name is None else "/" + self.name
        if self.name is None:
            return None
        parent_identity = parent.identity
        if parent_identity is None:
            return None
        return f"{parent_identity}/{self.name}"

    @property
    def is_directory(self) -> bool:
        return isinstance(self.contents, Directory)

    @property
    def is_unit(self) -> bool:
        return isinstance(self.contents, (Factory, Stub))

    @property
    def is_alias(self) -> bool:
        return isinstance(self.contents, Alias)

    @property
    def has_exports(self) -> bool:
        return self.module is not None and self.module.evaluated

    def child(self, name: str) -> Node | None:
        """Exact child lookup; None unless this is a directory holding ``name``."""
        if isinstance(self.contents, Directory):
            return self.contents.children.get(name)
        return None

    def children(self) -> Iterator[tuple[str, Node]]:
        if isinstance(self.contents, Directory):
            yield from self.contents.children.items()

    def enclosing_directory(self) -> Node | None:
        """Nearest directory at or above this node."""
        node: Node | None = self
        while node is not None and not node.is_directory:
            node = node.parent
        return node

    def root(self) -> Node:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def effective_options(self, default: InstallerOptions) -> InstallerOptions:
        """Options of the nearest node (self included) carrying them, else ``default``."""
        node: Node | None = self
        while node is not None:
            if node.options is not None:
                return node.options
            node = node.parent
        return default

    def __repr__(self) -> str:
        kind = type(self.contents).__name__ if self.contents is not None else "Absent"
        return f"Node({self.identity!r}, {kind})"


def _default_factory(deps: tuple[str, ...]) -> FactoryFunc:
    """Body for a dependency-only unit: require every dependency once it is ready."""

    def require_deps(require, exports, module):
        for dep in deps:
            require.ensure(dep, lambda r, *_, dep=dep: r(dep))

    return require_deps


def normalize_fragment(value: Any) -> Contents | None:
    """Convert one fragment value into tree contents.

    Returns None for None (nothing to install). Mappings become an empty
    Directory; their entries are merged by merge_fragment.

    Raises:
        InvalidFragmentError: The value has no tree representation
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        return Directory()
    if isinstance(value, str):
        return Alias(value)
    if callable(value):
        deps = getattr(value, "deps", None) or ()
        return Factory(value, tuple(deps))
    if isinstance(value, (list, tuple)):
        deps: list[str] = []
        funcs: list[FactoryFunc] = []
        record: dict[str, Any] = {}
        has_record = False
        for item in value:
            if isinstance(item, str):
                deps.append(item)
            elif isinstance(item, Mapping):
                record.update(item)
                has_record = True
            elif callable(item):
                funcs.append(item)
            else:
                raise InvalidFragmentError(f"Unsupported item in unit definition: {item!r}")
        if len(funcs) > 1:
            raise InvalidFragmentError(f"Unit definition has {len(funcs)} factories; expected at most one")
        if funcs:
            return Factory(funcs[0], tuple(deps))
        if has_record:
            return Stub(record, tuple(deps))
        return Factory(_default_factory(tuple(deps)), tuple(deps))
    raise InvalidFragmentError(f"Cannot install value of type {type(value).__name__}: {value!r}")


def merge_fragment(node: Node, fragment: Any, options: InstallerOptions | None = None) -> None:
    """Merge ``fragment`` into ``node``, recursively for directories.

    Exactly one Node exists per installed path: existing children are merged
    into, never replaced. A stub is upgraded by any real definition; other
    installed contents keep their first definition.
    """
    contents = normalize_fragment(fragment)
    if contents is None:
        return

    current = node.contents
    if current is None:
        node.contents = contents
    elif isinstance(current, Stub) and isinstance(contents, Stub):
        current.record.update(contents.record)
    elif isinstance(current, Stub):
        logger.debug(f"[tree:merge] Replacing stub at {node.identity!r} with {type(contents).__name__}")
        node.contents = contents
        if options is not None:
            node.options = options
    elif not (isinstance(current, Directory) and isinstance(contents, Directory)):
        logger.debug(
            f"[tree:merge] Keeping existing {type(current).__name__} at {node.identity!r}, "
            f"ignoring {type(contents).__name__}"
        )
        return

    if isinstance(node.contents, Directory):
        if node.ready_cache is None:
            node.ready_cache = {}
        if isinstance(fragment, Mapping):
            children = node.contents.children
            for key, value in fragment.items():
                child = children.get(key)
                if child is None:
                    child = Node(node, key, options)
                    children[key] = child
                merge_fragment(child, value, options)
