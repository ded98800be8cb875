"""Installer: the context object that owns one module tree.

    install = make_installer()
    require = install({
        "main.js": ["./util", lambda require, exports, module: ...],
        "util.js": lambda require, exports, module: exports.update(ok=True),
    })
    require("./main")

Everything mutable (root node, deferred queue, readiness caches, prefetch
state) hangs off one Installer; there is no process-wide state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .config import InstallerOptions
from .config import coerce_options
from .errors import InvalidFragmentError
from .evaluation import Evaluator
from .evaluation import Module
from .evaluation import Require
from .nodes import Factory
from .nodes import Node
from .nodes import merge_fragment
from .nodes import normalize_fragment
from .prefetch import Prefetcher
from .readiness import ReadinessEngine
from .resolution import Resolver
from .scheduler import DeferFunc
from .scheduler import DeferredQueue
from .scheduler import asyncio_defer

logger = logging.getLogger(__name__)

OverrideHook = Callable[[str, str | None], Any]
FallbackHook = Callable[[str, str | None, Exception], Any]
EvaluateHook = Callable[[Module], bool]


class Installer:
    """Owns a module tree and the machinery that resolves and evaluates it.

    Hooks (assignable attributes):
        fetch: ``fetch(missing) -> fragment | None | awaitable`` used by prefetch
        override: ``override(identifier, requester_id) -> identifier | falsy``
            applied to bare identifiers
        fallback: ``fallback(identifier, requester_id, error) -> value``; if it
            has a ``resolve`` attribute, that is used by ``require.resolve``
        on_evaluate: ``on_evaluate(module) -> bool``; True skips the factory
    """

    def __init__(
        self,
        options: InstallerOptions | dict[str, Any] | None = None,
        *,
        defer: DeferFunc | None = None,
        fetch: Callable[..., Any] | None = None,
        override: OverrideHook | None = None,
        fallback: FallbackHook | None = None,
        on_evaluate: EvaluateHook | None = None,
    ):
        self.options = coerce_options(options) or InstallerOptions()
        self.fetch = fetch
        self.override = override
        self.fallback = fallback
        self.on_evaluate = on_evaluate

        self.root = Node()
        merge_fragment(self.root, {})

        self.resolver = Resolver(self)
        self.evaluator = Evaluator(self)
        self.readiness = ReadinessEngine(self)
        self.queue = DeferredQueue(self, defer if defer is not None else asyncio_defer)
        self.prefetcher = Prefetcher(self)

    @property
    def require(self) -> Require:
        """Resolution function bound to the tree root."""
        return self.evaluator.require_for(self.root)

    def install(
        self,
        fragment: dict[str, Any] | None = None,
        options: InstallerOptions | dict[str, Any] | None = None,
    ) -> Require:
        """Merge ``fragment`` into the tree and retry queued entry points.

        Args:
            fragment: Mapping of names to directories, units, or aliases
            options: Overrides for the nodes this call creates; unset fields
                inherit from the installer's options

        Returns:
            The root Require
        """
        if fragment is not None:
            subtree_options = coerce_options(options)
            if subtree_options is not None:
                subtree_options = self.options.merged_with(subtree_options)
            merge_fragment(self.root, fragment, subtree_options)
            logger.debug(f"[tree:install] Merged fragment with {len(fragment)} top-level entries")
        self.queue.flush()
        return self.require

    __call__ = install

    def enqueue(self, anchor: Node, identifiers: list[str], callback: Callable[..., Any] | None) -> Node:
        """Queue an anonymous entry point anchored at ``anchor``'s directory.

        The node points at the directory for resolution purposes, but is not
        listed among its children.
        """
        directory = anchor.enclosing_directory() or self.root
        contents = normalize_fragment([*identifiers, callback] if callback is not None else identifiers)
        if not isinstance(contents, Factory):
            raise InvalidFragmentError(f"Queued entry point must be dependencies and a callback, got {identifiers!r}")
        node = Node(directory)
        node.contents = contents
        parent_module = anchor.module
        if parent_module is not None:
            self.evaluator.module_for(node).parent = parent_module
        self.queue.append(node)
        return node

    def __repr__(self) -> str:
        return f"Installer(queued={len(self.queue)})"


def make_installer(
    options: InstallerOptions | dict[str, Any] | None = None,
    *,
    defer: DeferFunc | None = None,
    fetch: Callable[..., Any] | None = None,
    override: OverrideHook | None = None,
    fallback: FallbackHook | None = None,
    on_evaluate: EvaluateHook | None = None,
) -> Installer:
    """Create an Installer with its own empty tree.

    Args:
        options: Default resolution options (model or dict)
        defer: Primitive that runs a callback on a later turn (default: the
            running asyncio loop's call_soon)
        fetch, override, fallback, on_evaluate: Hooks, see Installer
    """
    return Installer(
        options,
        defer=defer,
        fetch=fetch,
        override=override,
        fallback=fallback,
        on_evaluate=on_evaluate,
    )
