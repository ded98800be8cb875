"""Identifier resolver.

Resolution order for one identifier:
1. Locate a starting node
   - "/a/b"  -> walk from the tree root
   - "./a"   -> walk from the requester's enclosing directory
   - "a/b"   -> search each ancestor's dependency directory, nearest first
2. Walk the segments ("." no-op, ".." parent, otherwise exact child; the
   last segment also tries each configured extension when there is no exact
   match or the exact match is a directory)
3. While the result is a directory: follow the manifest's main fields,
   else fall back to the index file
4. If the result is an alias: resolve its target from the alias's location
   and repeat from step 1

Steps 3 and 4 share a visited set for the whole chain, so manifest and alias
cycles terminate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from ..config import InstallerOptions
from ..nodes import Alias
from ..nodes import Node
from .identifiers import is_absolute
from .identifiers import is_bare
from .identifiers import is_relative
from .identifiers import split_segments

if TYPE_CHECKING:
    from ..evaluation import Module
    from ..installer import Installer

logger = logging.getLogger(__name__)


class Resolver:
    """Resolves identifiers to nodes of one installer's tree.

    Never raises for unresolvable identifiers; returns None and leaves the
    typed failure to the caller.
    """

    def __init__(self, installer: Installer):
        self._installer = installer

    @property
    def default_options(self) -> InstallerOptions:
        return self._installer.options

    def options_for(self, node: Node) -> InstallerOptions:
        return node.effective_options(self._installer.options)

    # ----- Segment walking -----

    def append_part(self, node: Node | None, part: str, is_last: bool) -> Node | None:
        """Resolve a single segment relative to ``node``'s enclosing directory."""
        directory = node.enclosing_directory() if node is not None else None
        if directory is None:
            return None

        if not part or part == ".":
            return directory

        if part == "..":
            return directory.parent

        exact = directory.child(part)

        # Extensions only apply to the last segment, and only when there is
        # no exact match or the exact match is a directory.
        if is_last and (exact is None or exact.is_directory):
            for ext in self.options_for(directory).extensions:
                candidate = directory.child(part + ext)
                if candidate is not None:
                    return candidate
            candidate = self._match_own_extension(directory, part)
            if candidate is not None:
                return candidate

        return exact

    def _match_own_extension(self, directory: Node, part: str) -> Node | None:
        """Child installed with its own options whose extensions complete ``part``."""
        for name, child in directory.children():
            if child.options is None or not name.startswith(part):
                continue
            if name[len(part) :] in child.options.extensions:
                return child
        return None

    def append_id(self, node: Node | None, identifier: str) -> Node | None:
        """Walk every segment of ``identifier`` starting at ``node``."""
        parts = split_segments(identifier)
        last = len(parts) - 1
        for i, part in enumerate(parts):
            if node is None:
                return None
            if i > 0 and not node.is_directory:
                return None
            node = self.append_part(node, part, i == last)
        return node

    # ----- Public API -----

    def resolve(
        self,
        from_node: Node,
        identifier: str,
        parent_module: Module | None = None,
        visited: set[Node] | None = None,
    ) -> Node | None:
        """Resolve ``identifier`` as requested from ``from_node``.

        Args:
            from_node: Requesting node (unit or directory)
            identifier: Absolute, relative, or bare identifier
            parent_module: Module on whose behalf resolution happens; manifests
                evaluated along the way are recorded as its children
            visited: Directories and aliases already seen in this chain

        Returns:
            The resolved unit node, or None when every strategy is exhausted
        """
        if visited is None:
            visited = set()

        if is_absolute(identifier):
            node = self.append_id(from_node.root(), identifier)
        elif is_relative(identifier):
            node = self.append_id(from_node, identifier)
        else:
            node = self._lookup_dependency(from_node, identifier, parent_module)

        return self._finish(node, parent_module, visited)

    # ----- Directory / alias follow-up -----

    def _finish(self, node: Node | None, parent_module: Module | None, visited: set[Node]) -> Node | None:
        while node is not None and node.is_directory:
            main = None
            if node not in visited:
                visited.add(node)
                main = self._main_from_manifest(node, parent_module, visited)
            else:
                logger.debug(f"[module:resolve] {node.identity!r} already visited, using index")
            node = main or self.append_part(node, self.options_for(node).index_name, True)

        if node is not None and isinstance(node.contents, Alias):
            if node in visited:
                logger.debug(f"[module:resolve] Alias cycle at {node.identity!r}")
                return None
            visited.add(node)
            target = node.contents.target
            logger.debug(f"[module:resolve] {node.identity!r} -> alias {target!r}")
            return self.resolve(node, target, parent_module, visited)

        return node

    def _main_from_manifest(self, directory: Node, parent_module: Module | None, visited: set[Node]) -> Node | None:
        """Follow the first main field of ``directory``'s manifest that resolves."""
        options = self.options_for(directory)
        manifest = directory.child(options.manifest_name)
        if manifest is None or not manifest.is_unit:
            return None

        record = self._installer.evaluator.evaluate(manifest, parent_module)
        if not isinstance(record, Mapping):
            return None

        for field_name in options.main_fields:
            main = record.get(field_name)
            if not isinstance(main, str):
                continue
            found = self.append_id(directory, main) or self.resolve(directory, main, parent_module, visited)
            if found is not None:
                logger.debug(f"[module:resolve] {directory.identity!r} -> {field_name} {main!r}")
                return found
        return None

    # ----- Bare identifiers -----

    def _lookup_dependency(self, from_node: Node, identifier: str, parent_module: Module | None) -> Node | None:
        """Search ancestor dependency directories for a bare identifier."""
        override = self._installer.override
        if override is not None:
            requester_id = parent_module.id if parent_module is not None else from_node.identity
            rewritten = override(identifier, requester_id)
            if not isinstance(rewritten, str):
                logger.debug(f"[module:resolve] {identifier!r} vetoed by override")
                return None
            if rewritten != identifier:
                logger.debug(f"[module:resolve] {identifier!r} rewritten to {rewritten!r}")
                identifier = rewritten
                if is_absolute(identifier):
                    return self.append_id(from_node.root(), identifier)
                if is_relative(identifier):
                    return self.append_id(from_node, identifier)

        assert is_bare(identifier)
        directory = from_node.enclosing_directory()
        while directory is not None:
            dependency_dir = directory.child(self.options_for(directory).dependency_dir)
            if dependency_dir is not None and dependency_dir.is_directory:
                found = self.append_id(dependency_dir, identifier)
                if found is not None:
                    return found
            directory = directory.parent
        return None
