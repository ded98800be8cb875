"""Module evaluation.

Each unit node gets one Module record. Evaluating a node calls its factory
at most once as ``factory(require, exports, module)``; afterwards the
memoized ``module.exports`` is returned, whatever its value (None and
False included).

The exports container and the bound ``require`` exist before the factory
runs, so a circular require of a module that is still evaluating returns
its partially populated exports instead of recursing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from collections.abc import Iterable
from typing import TYPE_CHECKING
from typing import Any

from .errors import ModuleNotFoundError
from .nodes import Factory
from .nodes import Node
from .nodes import Stub

if TYPE_CHECKING:
    import asyncio

    from .installer import Installer

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel returned when a node has nothing to evaluate."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
_UNSET: Any = object()


class Module:
    """Evaluation record of one unit.

    Attributes:
        id: Identity of the unit (None for anonymous entry points)
        exports: Evaluation result; unset until the unit is evaluated
        parent: Module that first required this one
        children: Distinct modules this one resolved, in first-use order
        child_ids: Identity -> module for everything resolved on this
            module's behalf, manifests included
        loaded: True once the factory returned normally
    """

    def __init__(self, node: Node):
        self.node = node
        self.id = node.identity
        self._exports: Any = _UNSET
        self.parent: Module | None = None
        self.children: list[Module] = []
        self.child_ids: dict[str, Module] = {}
        self.loaded = False
        self.require: Require | None = None

    @property
    def exports(self) -> Any:
        if self._exports is _UNSET:
            return None
        return self._exports

    @exports.setter
    def exports(self, value: Any) -> None:
        self._exports = value

    @property
    def evaluated(self) -> bool:
        """True once exports were assigned, even to a falsy value."""
        return self._exports is not _UNSET

    def add_child(self, child: Module) -> None:
        if child is self:
            return
        key = child.id if child.id is not None else f"<anonymous:{id(child)}>"
        if key not in self.child_ids:
            self.child_ids[key] = child
            self.children.append(child)

    def __repr__(self) -> str:
        return f"Module({self.id!r}, evaluated={self.evaluated})"


class Require:
    """Resolution function bound to one node.

    Call it with an identifier to resolve and evaluate a dependency.
    """

    def __init__(self, installer: Installer, node: Node):
        self._installer = installer
        self._node = node

    @property
    def node(self) -> Node:
        return self._node

    @property
    def module(self) -> Module | None:
        return self._node.module

    @property
    def extensions(self) -> tuple[str, ...]:
        """Extensions in effect where this require resolves from (read-only)."""
        directory = self._node.enclosing_directory() or self._node.root()
        return directory.effective_options(self._installer.options).extensions

    def _requester_id(self) -> str | None:
        return self._node.identity

    def __call__(self, identifier: str) -> Any:
        installer = self._installer
        parent_module = self._node.module
        target = installer.resolver.resolve(self._node, identifier, parent_module)
        result = installer.evaluator.evaluate(target, parent_module)
        if result is MISSING:
            error = ModuleNotFoundError(identifier, self._requester_id())
            fallback = installer.fallback
            if fallback is not None and callable(fallback):
                logger.debug(f"[module:require] {identifier!r} not found, using fallback")
                return fallback(identifier, self._requester_id(), error)
            raise error
        return result

    def resolve(self, identifier: str) -> str:
        """Return the canonical identity ``identifier`` resolves to.

        Raises:
            ModuleNotFoundError: Not resolvable and no fallback.resolve hook
                supplied a substitute
        """
        target = self._installer.resolver.resolve(self._node, identifier, self._node.module)
        if target is not None and target.identity is not None:
            return target.identity
        error = ModuleNotFoundError(identifier, self._requester_id())
        fallback = self._installer.fallback
        resolve_hook = getattr(fallback, "resolve", None)
        if resolve_hook is not None:
            return resolve_hook(identifier, self._requester_id(), error)
        raise error

    def ready(self, identifier: str) -> bool:
        """True if ``identifier`` resolves and its static dependencies are installed."""
        target = self._installer.resolver.resolve(self._node, identifier, self._node.module)
        return self._installer.readiness.is_ready(target)

    def ensure(self, identifiers: str | Iterable[str] = (), callback: Callable[..., Any] | None = None) -> None:
        """Queue ``callback`` to run once every identifier is ready.

        The callback is called like a factory: ``callback(require, exports, module)``.
        Without a callback the identifiers are simply required in order.
        """
        if isinstance(identifiers, str):
            identifiers = [identifiers]
        self._installer.enqueue(self._node, list(identifiers), callback)

    def prefetch(self, identifier: str) -> asyncio.Future[str]:
        """Fetch whatever ``identifier`` still needs; resolves to its identity."""
        return self._installer.prefetcher.prefetch(self._node, identifier)

    # The root handle's fetch hook writes through to the installer.
    @property
    def fetch(self) -> Callable[..., Any] | None:
        return self._installer.fetch

    @fetch.setter
    def fetch(self, hook: Callable[..., Any] | None) -> None:
        self._installer.fetch = hook

    def __repr__(self) -> str:
        return f"Require({self._node.identity!r})"


class Evaluator:
    """Idempotent unit instantiation for one installer."""

    def __init__(self, installer: Installer):
        self._installer = installer

    def module_for(self, node: Node) -> Module:
        if node.module is None:
            node.module = Module(node)
        return node.module

    def require_for(self, node: Node) -> Require:
        module = self.module_for(node)
        if module.require is None:
            module.require = Require(self._installer, node)
        return module.require

    def evaluate(self, node: Node | None, parent_module: Module | None = None) -> Any:
        """Evaluate ``node`` at most once and return its exports.

        Returns MISSING for absent nodes, directories, and aliases.
        """
        if node is None or not node.is_unit:
            return MISSING

        module = self.module_for(node)
        if parent_module is not None:
            if module.parent is None and module is not parent_module:
                module.parent = parent_module
            parent_module.add_child(module)

        if module.evaluated:
            return module.exports

        contents = node.contents
        if isinstance(contents, Stub):
            # Not memoized: a fetched definition replaces the stub later.
            return contents.record

        assert isinstance(contents, Factory)
        require = self.require_for(node)
        module.exports = {}

        hook = self._installer.on_evaluate
        if hook is not None and hook(module):
            logger.debug(f"[module:evaluate] {module.id!r} handled by host hook")
        else:
            logger.debug(f"[module:evaluate] {module.id!r}")
            contents.func(require, module.exports, module)
        module.loaded = True
        return module.exports
