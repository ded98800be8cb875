"""Readiness of units: are all transitive static dependencies installed?

Rules:
- Absent nodes, directories, and unfetched stubs are not ready
- A unit whose exports were already assigned is ready
- An alias is ready iff its target is ready
- A factory is ready iff every declared dependency resolves to a ready unit

Cycles: while a unit's dependencies are being checked it is IN_PROGRESS,
and a re-entrant check on it answers True. That answer is provisional: it
holds only as long as the unit it leans on turns out ready. Every check
reports the shallowest in-progress unit its answer depended on, so a
provisional answer is never written to a directory cache, and is only
reused while that unit is still being checked.

Positive answers that depend on nothing in progress are cached per
directory, keyed by the literal dependency identifier, because resolution
from any unit of a directory gives the same result. Nodes are never
removed, so such an answer stays valid.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from .nodes import Alias
from .nodes import Factory
from .nodes import Node
from .nodes import ReadyState

if TYPE_CHECKING:
    from .installer import Installer

logger = logging.getLogger(__name__)

# Depth reported by answers that do not depend on any in-progress unit.
SETTLED = sys.maxsize


class ReadinessEngine:
    """Cycle-safe readiness checks over one installer's tree."""

    def __init__(self, installer: Installer):
        self._installer = installer
        self._stack: list[Node] = []
        self._depth: dict[Node, int] = {}
        # Per top-level check: provisional answers and known failures.
        self._provisional: dict[Node, tuple[int, Node]] = {}
        self._not_ready: set[Node] = set()

    def is_ready(self, node: Node | None) -> bool:
        try:
            ready, _ = self._check(node)
        finally:
            if not self._stack:
                self._provisional.clear()
                self._not_ready.clear()
        return ready

    def _check(self, node: Node | None) -> tuple[bool, int]:
        """Return (ready, depth of the shallowest in-progress unit relied on)."""
        if node is None:
            return False, SETTLED

        if node.has_exports:
            return True, SETTLED

        contents = node.contents
        if isinstance(contents, Alias):
            target = self._installer.resolver.resolve(node, contents.target)
            if target is node:
                return False, SETTLED
            return self._check(target)

        if not isinstance(contents, Factory):
            return False, SETTLED

        if not contents.pending:
            return True, SETTLED

        if node.ready_state is ReadyState.IN_PROGRESS:
            logger.debug(f"[module:ready] Cycle through {node.identity!r}, assuming ready")
            return True, self._depth[node]

        if node in self._not_ready:
            return False, SETTLED

        memo = self._provisional.get(node)
        if memo is not None:
            relied, anchor = memo
            if relied < len(self._stack) and self._stack[relied] is anchor:
                return True, relied

        depth = len(self._stack)
        self._stack.append(node)
        self._depth[node] = depth
        node.ready_state = ReadyState.IN_PROGRESS
        try:
            ready, relied = self._check_pending(node, contents, depth)
        finally:
            node.ready_state = ReadyState.UNKNOWN
            self._stack.pop()
            del self._depth[node]

        if not ready:
            self._not_ready.add(node)
        elif relied != SETTLED:
            self._provisional[node] = (relied, self._stack[relied])
        return ready, relied

    def _check_pending(self, node: Node, contents: Factory, depth: int) -> tuple[bool, int]:
        directory = node.enclosing_directory()
        cache = directory.ready_cache if directory is not None else None
        resolver = self._installer.resolver
        shallowest = SETTLED

        for dep in list(contents.pending):
            if cache is not None and cache.get(dep):
                contents.pending.remove(dep)
                continue

            ready, relied = self._check(resolver.resolve(node, dep))
            if not ready:
                return False, SETTLED

            # Leans on a unit further up the stack: neither cached nor dropped.
            if relied < depth:
                shallowest = min(shallowest, relied)
                continue

            # Leans only on this unit: dropped from its own pending list.
            if relied == SETTLED and cache is not None:
                cache[dep] = True
            contents.pending.remove(dep)

        return True, shallowest
