"""Application-level exception types.

Convention:
- ``GrafanaError`` subclasses: failures talking to the Grafana HTTP API.
  ``GrafanaUnavailableError`` and 5xx ``GrafanaAPIError`` are transient and
  retried on the next poll cycle; ``GrafanaAuthError`` is permanent.
- ``FolderConflictError``: a folder create collided with an existing folder.
  The reconciler recovers from it locally and never surfaces it.
- ``ReconcileError`` / ``UploadError``: per-folder and per-dashboard failures
  reported to the sync pass, which logs them and carries on with the batch.
- ``ValueError``: local validation problems (bad paths, invalid dashboard JSON).
"""

from __future__ import annotations


class DashsyncError(Exception):
    """Base class for dashsync errors."""


class SourceError(DashsyncError):
    """Raised when the dashboard source tree cannot be materialized."""


class GrafanaError(DashsyncError):
    """Base class for Grafana API failures."""


class GrafanaUnavailableError(GrafanaError):
    """Raised when Grafana cannot be reached (connection error, timeout)."""


class GrafanaAPIError(GrafanaError):
    """Raised when Grafana answers with an unexpected status code."""

    def __init__(self, status_code: int, body: str, action: str = "request") -> None:
        self.status_code = status_code
        self.body = body
        self.action = action
        super().__init__(f"Grafana {action} failed ({status_code}): {body}")

    @property
    def transient(self) -> bool:
        return self.status_code >= 500


class GrafanaAuthError(GrafanaAPIError):
    """Raised on 401/403 responses."""


class FolderConflictError(GrafanaAPIError):
    """Raised when creating a folder that already exists (409/412)."""


class ReconcileError(DashsyncError):
    """Raised when a folder cannot be created or located on the remote side."""

    def __init__(self, folder_path: str, message: str) -> None:
        self.folder_path = folder_path
        super().__init__(f"{folder_path}: {message}")


class UploadError(DashsyncError):
    """Raised when a dashboard cannot be uploaded."""

    def __init__(self, source_path: str, message: str) -> None:
        self.source_path = source_path
        super().__init__(f"{source_path}: {message}")
