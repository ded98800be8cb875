"""Asynchronous prefetch with per-turn batching.

``prefetch(identifier)`` returns a future for the identity the identifier
resolves to once everything it statically needs is installed.

- Every identifier that does not resolve, and every stub without exports,
  found by walking declared dependencies from the target is "missing"
- Missing identifiers requested during one turn are fetched with a single
  call to the installer's fetch hook, scheduled with loop.call_soon
- An identifier already being fetched joins that in-flight batch
- Futures settle in request order (by sequence number), across batches
- A failing fetch rejects every request waiting on that batch with the
  same error; nothing is memoized, so prefetching again starts a new batch

The fetch hook is called as ``fetch(missing)`` where ``missing`` maps each
canonical identifier to a FetchRequest. It may return a tree fragment to
install at the root, None, or an awaitable of either. Assigning
``request.module.exports`` resolves a stubbed unit directly; that value
wins over any factory installed later.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from .config import InstallerOptions
from .errors import FetchError
from .errors import ModuleNotFoundError
from .nodes import Factory
from .nodes import Node
from .nodes import Stub
from .resolution import normalize_identifier

if TYPE_CHECKING:
    from .evaluation import Module
    from .installer import Installer

logger = logging.getLogger(__name__)


@dataclass
class FetchRequest:
    """Context handed to the fetch hook for one missing identifier.

    Attributes:
        identifier: Canonical identifier (absolute path, or bare package id)
        parent_id: Identity of the unit that needs it
        module: Module record of the stubbed unit, when one is installed
        stub: Stub export record, when one is installed
        options: Options in effect where the identifier was requested
    """

    identifier: str
    parent_id: str | None
    options: InstallerOptions
    module: Module | None = None
    stub: dict[str, Any] | None = None


@dataclass
class _Batch:
    requests: dict[str, FetchRequest] = field(default_factory=dict)
    done: asyncio.Future[None] | None = None


class Prefetcher:
    """Coalesces prefetch requests into batched fetch calls."""

    def __init__(self, installer: Installer):
        self._installer = installer
        self._pending: _Batch | None = None
        self._inflight: dict[str, asyncio.Future[None]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._next_seq = 0
        self._next_to_settle = 0
        self._outcomes: dict[int, tuple[asyncio.Future[str], Any, BaseException | None]] = {}
        self.batch_count = 0

    # ----- Public API -----

    def prefetch(self, from_node: Node, identifier: str) -> asyncio.Future[str]:
        """Ensure ``identifier`` and its static dependencies are installed.

        Must be called with a running event loop. The returned future
        resolves to the canonical identity, or fails with ModuleNotFoundError
        or with the fetch hook's own error.
        """
        loop = asyncio.get_running_loop()
        missing = self.collect_missing(from_node, identifier)
        future: asyncio.Future[str] = loop.create_future()
        seq = self._next_seq
        self._next_seq += 1

        waits: list[asyncio.Future[None]] = []
        for key, request in missing.items():
            batch_done = self._inflight.get(key)
            if batch_done is None:
                batch_done = self._enqueue(loop, request)
            if batch_done not in waits:
                waits.append(batch_done)

        logger.debug(f"[prefetch:request] #{seq} {identifier!r} waits on {len(waits)} batch(es)")
        self._spawn(loop, self._complete(seq, future, from_node, identifier, waits))
        return future

    def collect_missing(self, from_node: Node, identifier: str) -> dict[str, FetchRequest]:
        """Missing identifiers needed by ``identifier``, in discovery order."""
        missing: dict[str, FetchRequest] = {}
        resolver = self._installer.resolver
        target = resolver.resolve(from_node, identifier)
        if target is None:
            key = normalize_identifier(from_node, identifier)
            missing[key] = FetchRequest(key, from_node.identity, self._options(from_node))
        else:
            self._walk(target, from_node.identity, missing, set())
        return missing

    # ----- Internals -----

    def _options(self, node: Node) -> InstallerOptions:
        return node.effective_options(self._installer.options)

    def _walk(self, node: Node, parent_id: str | None, missing: dict[str, FetchRequest], seen: set[Node]) -> None:
        if node in seen or node.has_exports:
            return
        seen.add(node)

        contents = node.contents
        if isinstance(contents, Stub):
            key = node.identity or normalize_identifier(node, ".")
            missing.setdefault(
                key,
                FetchRequest(
                    key,
                    parent_id,
                    self._options(node),
                    module=self._installer.evaluator.module_for(node),
                    stub=contents.record,
                ),
            )
            deps = contents.deps
        elif isinstance(contents, Factory):
            deps = contents.deps
        else:
            return

        resolver = self._installer.resolver
        for dep in deps:
            child = resolver.resolve(node, dep)
            if child is None:
                key = normalize_identifier(node, dep)
                missing.setdefault(key, FetchRequest(key, node.identity, self._options(node)))
            else:
                self._walk(child, node.identity, missing, seen)

    def _enqueue(self, loop: asyncio.AbstractEventLoop, request: FetchRequest) -> asyncio.Future[None]:
        if self._pending is None:
            self._pending = _Batch(done=loop.create_future())
            loop.call_soon(self._flush)
        batch = self._pending
        assert batch.done is not None
        batch.requests.setdefault(request.identifier, request)
        self._inflight[request.identifier] = batch.done
        return batch.done

    def _flush(self) -> None:
        batch, self._pending = self._pending, None
        if batch is None:
            return
        self._spawn(asyncio.get_running_loop(), self._run_batch(batch))

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Any) -> None:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_batch(self, batch: _Batch) -> None:
        assert batch.done is not None
        self.batch_count += 1
        installer = self._installer
        logger.debug(f"[prefetch:fetch] Fetching {len(batch.requests)} identifier(s): {list(batch.requests)}")
        try:
            fetch = installer.fetch
            result = fetch(dict(batch.requests)) if fetch is not None else None
            if inspect.isawaitable(result):
                result = await result
            if result is not None:
                if not isinstance(result, Mapping):
                    raise FetchError(f"fetch hook returned {type(result).__name__}, expected a tree fragment")
                installer.install(result)
        except Exception as e:
            logger.warning(f"[prefetch:fetch] Batch of {len(batch.requests)} failed: {e}")
            batch.done.set_exception(e)
        else:
            batch.done.set_result(None)
        finally:
            for key in batch.requests:
                if self._inflight.get(key) is batch.done:
                    del self._inflight[key]

    async def _complete(
        self,
        seq: int,
        future: asyncio.Future[str],
        from_node: Node,
        identifier: str,
        waits: list[asyncio.Future[None]],
    ) -> None:
        error: BaseException | None = None
        result: str | None = None

        outcomes = await asyncio.gather(*waits, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                error = outcome
                break

        if error is None:
            try:
                result = self._outcome(from_node, identifier)
            except Exception as e:
                error = e

        self._settle(seq, future, result, error)

    def _outcome(self, from_node: Node, identifier: str) -> str:
        target = self._installer.resolver.resolve(from_node, identifier)
        if target is None or target.identity is None:
            raise ModuleNotFoundError(identifier, from_node.identity)
        still_missing = self.collect_missing(from_node, identifier)
        if still_missing:
            first = next(iter(still_missing.values()))
            raise ModuleNotFoundError(first.identifier, first.parent_id)
        return target.identity

    def _settle(self, seq: int, future: asyncio.Future[str], result: Any, error: BaseException | None) -> None:
        self._outcomes[seq] = (future, result, error)
        while self._next_to_settle in self._outcomes:
            ready_future, ready_result, ready_error = self._outcomes.pop(self._next_to_settle)
            self._next_to_settle += 1
            if ready_future.done():
                continue
            if ready_error is not None:
                ready_future.set_exception(ready_error)
            else:
                ready_future.set_result(ready_result)
