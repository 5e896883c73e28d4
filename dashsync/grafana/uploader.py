"""Dashboard upload driver."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dashsync.exceptions import GrafanaError, ReconcileError, UploadError
from dashsync.grafana.client import GENERAL_FOLDER_ID
from dashsync.services.path_service import ROOT_FOLDER

if TYPE_CHECKING:
    from dashsync.grafana.client import GrafanaClient
    from dashsync.grafana.reconciler import FolderReconciler
    from dashsync.services.source_service import Dashboard

logger = logging.getLogger(__name__)


class DashboardUploader:
    """Upload dashboards into the folders resolved by a FolderReconciler."""

    def __init__(self, client: GrafanaClient, reconciler: FolderReconciler) -> None:
        self.client = client
        self.reconciler = reconciler

    def resolve_folder_id(self, dashboard: Dashboard) -> int:
        """Return the Grafana folder id for ``dashboard``.

        Root-level dashboards go to the General folder. A folder missing from
        the cache is reconciled on demand.
        """
        folder_path = dashboard.folder_path
        if folder_path == ROOT_FOLDER:
            return GENERAL_FOLDER_ID
        folder_id = self.reconciler.get_folder_id(folder_path)
        if folder_id is not None:
            return folder_id
        logger.warning(
            "Folder %s not in cache for %s, creating it", folder_path, dashboard.source_path
        )
        try:
            return self.reconciler.ensure_folder(folder_path)
        except ReconcileError as exc:
            msg = f"cannot ensure folder {folder_path}: {exc}"
            raise UploadError(dashboard.source_path, msg) from exc

    def upload(self, dashboard: Dashboard, message: str | None = None) -> None:
        """Create or overwrite ``dashboard`` in Grafana.

        Raises UploadError on failure. When the upload into a cached folder
        fails, the cache entry is dropped so the next attempt re-resolves it.
        """
        folder_id = self.resolve_folder_id(dashboard)
        try:
            self.client.upsert_dashboard(dashboard.content, folder_id, message)
        except GrafanaError as exc:
            if folder_id != GENERAL_FOLDER_ID:
                self.reconciler.cache.invalidate(dashboard.folder_path)
            raise UploadError(dashboard.source_path, str(exc)) from exc
        logger.info("Uploaded dashboard: %s", dashboard.source_path)
