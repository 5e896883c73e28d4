"""Folder forest built from dashboard file paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dashsync.services.path_service import ROOT_FOLDER, classify, join_path, split_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from os import PathLike

logger = logging.getLogger(__name__)

UNSET_REMOTE_ID = 0


@dataclass(eq=False)
class FolderNode:
    """One directory level, mapped to one Grafana folder once reconciled.

    Nodes compare by identity: ``full_path`` is unique within a forest, so two
    distinct node objects never stand for the same folder.
    """

    name: str
    full_path: str
    remote_id: int = UNSET_REMOTE_ID
    remote_uid: str = ""
    children: list[FolderNode] = field(default_factory=list)

    @property
    def reconciled(self) -> bool:
        return self.remote_id != UNSET_REMOTE_ID and bool(self.remote_uid)

    def add_child(self, child: FolderNode) -> bool:
        """Link ``child`` under this node. Returns False if it was already linked."""
        if any(existing is child for existing in self.children):
            return False
        self.children.append(child)
        return True

    def walk(self) -> Iterator[FolderNode]:
        """Yield this node and its descendants, parents before children."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


class FolderForest:
    """Folder nodes indexed by ``full_path``.

    Edges live in ``FolderNode.children``; a node is a root when no other node
    lists it as a child.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, FolderNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, full_path: object) -> bool:
        return full_path in self._nodes

    def __getitem__(self, full_path: str) -> FolderNode:
        return self._nodes[full_path]

    def __iter__(self) -> Iterator[FolderNode]:
        return iter(self._nodes.values())

    def get(self, full_path: str) -> FolderNode | None:
        return self._nodes.get(full_path)

    def paths(self) -> list[str]:
        return list(self._nodes)

    def add(self, folder_path: str) -> FolderNode | None:
        """Ensure nodes exist for ``folder_path`` and all of its ancestors.

        Returns the leaf node, or None for the root folder.
        """
        parts = split_path(folder_path)
        parent: FolderNode | None = None
        node: FolderNode | None = None
        for i, name in enumerate(parts):
            current_path = join_path(parts[: i + 1])
            node = self._nodes.get(current_path)
            if node is None:
                node = FolderNode(name=name, full_path=current_path)
                self._nodes[current_path] = node
            if parent is not None:
                parent.add_child(node)
            parent = node
        return node

    def has_parent(self, node: FolderNode) -> bool:
        """Return True when some node in the forest lists ``node`` as a child."""
        return any(
            child is node for candidate in self._nodes.values() for child in candidate.children
        )

    def roots(self) -> list[FolderNode]:
        """Return the top-level nodes, in insertion order."""
        return [node for node in self._nodes.values() if not self.has_parent(node)]

    def edges(self) -> set[tuple[str, str]]:
        """Return ``(parent_path, child_path)`` pairs."""
        return {
            (node.full_path, child.full_path)
            for node in self._nodes.values()
            for child in node.children
        }


def build_folder_forest(
    paths: Iterable[str | PathLike[str]],
    base_path: str | PathLike[str],
) -> FolderForest:
    """Build the folder forest for a set of dashboard file paths.

    Files directly in ``base_path`` contribute no node. Files outside
    ``base_path`` are skipped with a warning.
    """
    forest = FolderForest()
    for path in paths:
        try:
            folder_path = classify(base_path, path)
        except ValueError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            continue
        if folder_path == ROOT_FOLDER:
            continue
        forest.add(folder_path)
    return forest
