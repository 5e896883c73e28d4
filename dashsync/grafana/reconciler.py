"""Folder reconciliation: make Grafana's folder tree match the folder forest."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dashsync.exceptions import FolderConflictError, GrafanaError, ReconcileError
from dashsync.services.folder_graph import FolderForest
from dashsync.services.path_service import ROOT_FOLDER, join_path, split_path

if TYPE_CHECKING:
    from dashsync.grafana.client import GrafanaClient, RemoteFolder
    from dashsync.services.folder_graph import FolderNode

logger = logging.getLogger(__name__)


class FolderCache:
    """Map folder paths to Grafana folder ids. State is lost on restart.

    Entries are written only after a folder was found or created remotely.
    They are never verified again; ``invalidate`` lets callers drop an entry
    that turned out to be stale.
    """

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._uids: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, full_path: object) -> bool:
        return full_path in self._ids

    def store(self, full_path: str, remote_id: int, remote_uid: str) -> None:
        self._ids[full_path] = remote_id
        self._uids[full_path] = remote_uid

    def get_folder_id(self, full_path: str) -> int | None:
        """Return the cached folder id, or None when the path was never reconciled."""
        if full_path == ROOT_FOLDER:
            return None
        return self._ids.get(full_path)

    def get_folder_uid(self, full_path: str) -> str | None:
        return self._uids.get(full_path)

    def invalidate(self, full_path: str) -> None:
        """Drop ``full_path`` and every cached folder below it."""
        prefix = f"{full_path}/"
        for path in [p for p in self._ids if p == full_path or p.startswith(prefix)]:
            del self._ids[path]
            self._uids.pop(path, None)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one forest root and its subtree."""

    root_path: str
    reconciled: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed_path: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FolderReconciler:
    """Create-or-reuse Grafana folders for each node of a folder forest.

    Every node is looked up remotely before anything is created, so running the
    reconciler again against an unchanged Grafana issues no create calls.
    """

    def __init__(self, client: GrafanaClient, cache: FolderCache | None = None) -> None:
        self.client = client
        self.cache = cache if cache is not None else FolderCache()

    def get_folder_id(self, full_path: str) -> int | None:
        """Cache lookup only; never touches the network."""
        return self.cache.get_folder_id(full_path)

    def _adopt(self, node: FolderNode, folder: RemoteFolder) -> None:
        node.remote_id = folder.id
        node.remote_uid = folder.uid
        self.cache.store(node.full_path, folder.id, folder.uid)

    def _reconcile_node(self, node: FolderNode, parent_uid: str) -> bool:
        """Find or create the remote folder for ``node``. Returns True when created."""
        try:
            existing = self.client.find_folder(node.name, parent_uid)
        except GrafanaError as exc:
            raise ReconcileError(node.full_path, f"failed to check existing folder: {exc}") from exc

        if existing is not None:
            logger.info(
                "Folder %r already exists (ID: %d, UID: %s, parent: %s)",
                node.name,
                existing.id,
                existing.uid,
                parent_uid or "<root>",
            )
            self._adopt(node, existing)
            return False

        try:
            created = self.client.create_folder(node.name, parent_uid)
        except FolderConflictError as conflict:
            logger.warning("Folder %r already exists (conflict), fetching it", node.name)
            try:
                existing = self.client.find_folder(node.name, parent_uid)
            except GrafanaError as exc:
                raise ReconcileError(
                    node.full_path, f"folder exists but cannot be retrieved: {exc}"
                ) from exc
            if existing is None:
                raise ReconcileError(
                    node.full_path, f"folder exists but cannot be retrieved: {conflict.body}"
                ) from conflict
            self._adopt(node, existing)
            return False
        except GrafanaError as exc:
            raise ReconcileError(node.full_path, f"failed to create folder: {exc}") from exc

        logger.info(
            "Created folder %r (ID: %d, UID: %s, parent: %s)",
            node.name,
            created.id,
            created.uid,
            parent_uid or "<root>",
        )
        self._adopt(node, created)
        return True

    def reconcile(self, root: FolderNode, parent_uid: str = "") -> ReconcileResult:
        """Reconcile ``root`` and its descendants, parents before children.

        The walk stops at the first failure; nodes not reached are reported as
        skipped.
        """
        result = ReconcileResult(root_path=root.full_path)
        stack: list[tuple[FolderNode, str]] = [(root, parent_uid)]
        while stack:
            node, node_parent_uid = stack.pop()
            try:
                created = self._reconcile_node(node, node_parent_uid)
            except ReconcileError as exc:
                logger.error("Failed to reconcile folder %s: %s", node.full_path, exc)
                result.failed_path = node.full_path
                result.error = exc
                unreached = [child for child in node.walk() if child is not node]
                for entry, _ in reversed(stack):
                    unreached.extend(entry.walk())
                result.skipped = [n.full_path for n in unreached]
                return result
            result.reconciled.append(node.full_path)
            if created:
                result.created.append(node.full_path)
            for child in reversed(node.children):
                stack.append((child, node.remote_uid))
        return result

    def reconcile_forest(self, forest: FolderForest) -> list[ReconcileResult]:
        """Reconcile every root of ``forest`` independently."""
        return [self.reconcile(root) for root in forest.roots()]

    def ensure_folder(self, folder_path: str) -> int:
        """Return the folder id for ``folder_path``, reconciling it on demand.

        Raises ReconcileError when any segment cannot be found or created.
        """
        parts = split_path(folder_path)
        if not parts:
            msg = "empty folder path"
            raise ReconcileError(folder_path, msg)
        full_path = join_path(parts)
        cached = self.cache.get_folder_id(full_path)
        if cached is not None:
            return cached

        forest = FolderForest()
        forest.add(full_path)
        result = self.reconcile(forest[parts[0]])
        if result.error is not None:
            raise result.error
        return forest[full_path].remote_id
