"""Deferred evaluation of queued entry points.

The queue is a singly linked FIFO list with a head sentinel. A flush runs
on a later turn (through the installer's defer primitive) and looks only at
the oldest entry:

    idle ──append to empty queue / install()──▶ flush-pending
    flush-pending ──turn runs, head not ready──▶ idle
    flush-pending ──turn runs, head ready──▶ draining
    draining: schedule the next flush, pop the head, evaluate it

Entries run strictly in FIFO order. A ready entry waits behind an older
entry that is not ready yet; the queue stalls until install() makes the
head ready. Callers that need independent progress must use separate
installers.

Defer primitives:
- asyncio_defer: loop.call_soon on the running event loop (default)
- ManualDefer: turns driven by the host, for synchronous use and tests
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

from .nodes import Node

if TYPE_CHECKING:
    from .installer import Installer

logger = logging.getLogger(__name__)

DeferFunc = Callable[[Callable[[], Any]], Any]


def asyncio_defer(callback: Callable[[], Any]) -> None:
    """Run ``callback`` on a later turn of the running event loop.

    Raises:
        RuntimeError: No event loop is running
    """
    asyncio.get_running_loop().call_soon(callback)


class ManualDefer:
    """Defer primitive whose turns are run explicitly by the host.

    Usage:
        defer = ManualDefer()
        install = make_installer(defer=defer)
        ...
        defer.run_until_idle()
    """

    def __init__(self) -> None:
        self._callbacks: deque[Callable[[], Any]] = deque()

    def __call__(self, callback: Callable[[], Any]) -> None:
        self._callbacks.append(callback)

    def __len__(self) -> int:
        return len(self._callbacks)

    def run_pending(self) -> int:
        """Run callbacks deferred before this call; returns how many ran."""
        count = len(self._callbacks)
        for _ in range(count):
            self._callbacks.popleft()()
        return count

    def run_until_idle(self, max_turns: int = 10_000) -> int:
        """Run turns until nothing is deferred; returns the number of callbacks run."""
        total = 0
        for _ in range(max_turns):
            if not self._callbacks:
                return total
            total += self.run_pending()
        raise RuntimeError(f"Deferred callbacks still pending after {max_turns} turns")


@dataclass
class QueueEntry:
    """Queued entry point: an anonymous unit node plus the link to the next entry."""

    node: Node | None
    next: QueueEntry | None = None


class DeferredQueue:
    """FIFO queue of entry points waiting for their dependencies.

    One per installer, created with the root.
    """

    def __init__(self, installer: Installer, defer: DeferFunc):
        self._installer = installer
        self._defer = defer
        self.head = QueueEntry(None)
        self.tail = self.head
        self.pending = False

    def __len__(self) -> int:
        count = 0
        entry = self.head.next
        while entry is not None:
            count += 1
            entry = entry.next
        return count

    def append(self, node: Node) -> None:
        entry = QueueEntry(node)
        self.tail.next = entry
        self.tail = entry
        # First entry in an empty queue: nothing else will schedule a flush.
        if self.head.next is entry:
            self.flush()

    def flush(self) -> None:
        """Schedule a flush unless one is already pending or there is nothing queued."""
        if self.pending or self.head.next is None:
            return
        self.pending = True
        self._defer(self._run)

    def _run(self) -> None:
        self.pending = False
        entry = self.head.next
        if entry is None:
            return
        if not self._installer.readiness.is_ready(entry.node):
            logger.debug(f"[queue:flush] Head entry not ready, {len(self)} waiting")
            return

        # Schedule the next flush before evaluating: the entry may queue more work.
        self.head = entry
        self.flush()
        try:
            self._installer.evaluator.evaluate(entry.node)
        except Exception:
            logger.exception("Error in queued entry point")
            raise
        finally:
            entry.node = None
