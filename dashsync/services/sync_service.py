"""Sync service: one reconciliation pass and the revision poller around it."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dashsync.exceptions import SourceError, UploadError
from dashsync.grafana.reconciler import FolderCache, FolderReconciler, ReconcileResult
from dashsync.grafana.uploader import DashboardUploader
from dashsync.services.change_detector import ChangeDetector
from dashsync.services.folder_graph import build_folder_forest
from dashsync.services.git_service import version_message
from dashsync.services.source_service import load_dashboard

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from dashsync.grafana.client import GrafanaClient
    from dashsync.services.git_service import CommitInfo, GitService
    from dashsync.services.health_service import HealthChecker
    from dashsync.services.source_service import DashboardSource

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one reconciliation pass."""

    total: int = 0
    changed: list[str] = field(default_factory=list)
    uploaded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    folder_results: list[ReconcileResult] = field(default_factory=list)

    @property
    def folder_errors(self) -> list[ReconcileResult]:
        return [result for result in self.folder_results if not result.ok]

    @property
    def ok(self) -> bool:
        """True when no upload and no folder reconciliation failed.

        Unparseable files are skipped and do not count as failures.
        """
        return not self.failed and not self.folder_errors

    def error_summary(self) -> str:
        errors = [f"{result.failed_path}: {result.error}" for result in self.folder_errors]
        errors.extend(self.failed.values())
        return "; ".join(errors)


class SyncService:
    """Reconcile the dashboards directory against Grafana.

    Owns the fingerprint table and the folder cache, so consecutive passes on
    the same instance only upload what changed in between.
    """

    def __init__(
        self,
        source: DashboardSource,
        client: GrafanaClient,
        detector: ChangeDetector | None = None,
        cache: FolderCache | None = None,
    ) -> None:
        self.source = source
        self.client = client
        self.detector = detector if detector is not None else ChangeDetector(source.read_bytes)
        self.reconciler = FolderReconciler(client, cache)
        self.uploader = DashboardUploader(client, self.reconciler)

    def run_pass(self, message: str | None = None) -> SyncReport:
        """Materialize the source tree and sync it."""
        files = self.source.materialize()
        return self.sync_files(files, message)

    def sync_files(self, files: Sequence[str | Path], message: str | None = None) -> SyncReport:
        """Sync ``files`` (paths under the dashboards directory) to Grafana."""
        base_path = self.source.dashboards_dir
        report = SyncReport(total=len(files))
        report.changed = self.detector.changed_paths(files)
        if not report.changed:
            logger.info("No dashboard changes detected")
            return report

        logger.info(
            "Detected %d changed dashboard(s) out of %d total", len(report.changed), len(files)
        )

        done = 0
        try:
            # Folders are built from every file so unchanged dashboards keep their folders.
            forest = build_folder_forest(files, base_path)
            report.folder_results = self.reconciler.reconcile_forest(forest)
            for result in report.folder_errors:
                logger.error("Failed to create folder tree %s: %s", result.root_path, result.error)

            for path in report.changed:
                self._sync_dashboard(path, message, report)
                done += 1
        except Exception:
            # Unattempted dashboards must stay changed for the next pass.
            for path in report.changed[done:]:
                self.detector.forget(path)
            raise

        logger.info(
            "Sync completed: %d dashboard(s) updated, %d failed",
            len(report.uploaded),
            len(report.failed),
        )
        return report

    def _sync_dashboard(self, path: str, message: str | None, report: SyncReport) -> None:
        try:
            dashboard = load_dashboard(path, self.source.dashboards_dir)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load dashboard %s: %s", path, exc)
            report.skipped[path] = str(exc)
            return
        try:
            self.uploader.upload(dashboard, message)
        except UploadError as exc:
            logger.error("Failed to upload dashboard %s: %s", path, exc)
            self.detector.forget(path)
            report.failed[path] = str(exc)
        else:
            report.uploaded.append(path)


class Poller:
    """Run a sync pass whenever the repository moves to a new revision.

    The last synced revision only advances after a pass without failures, so
    a failed pass is retried on the next poll even if nothing was pushed.
    """

    def __init__(self, git: GitService, sync: SyncService, health: HealthChecker) -> None:
        self.git = git
        self.sync = sync
        self.health = health
        self.last_commit: str | None = None

    def _commit_info(self) -> CommitInfo | None:
        try:
            return self.git.commit_info()
        except (subprocess.SubprocessError, ValueError) as exc:
            logger.warning("Failed to get commit info: %s", exc)
            return None

    def poll_once(self) -> SyncReport | None:
        """Check for a new revision and sync it. Returns None when no pass ran."""
        try:
            commit = self.git.fetch_latest_commit()
        except (subprocess.SubprocessError, SourceError, OSError) as exc:
            logger.warning("Failed to fetch latest commit: %s", exc)
            self.health.set_last_error(str(exc))
            self.health.set_git_sync_health(False)
            return None
        self.health.set_git_sync_health(True)

        if commit == self.last_commit:
            logger.debug("No new commit (HEAD %s)", commit)
            return None

        logger.info("New commit detected: %s", commit)
        message = version_message(self._commit_info())
        if message:
            logger.info("Version: %s", message)

        try:
            report = self.sync.run_pass(message)
        except SourceError as exc:
            logger.error("Failed to copy dashboards: %s", exc)
            self.health.set_last_error(str(exc))
            return None

        self.health.set_last_sync()
        if report.ok:
            self.health.set_grafana_health(True)
            self.health.set_last_error("")
            self.last_commit = commit
        else:
            self.health.set_grafana_health(self.sync.client.health())
            self.health.set_last_error(report.error_summary())
            logger.warning("Sync of %s incomplete, it will be retried next cycle", commit)
        return report
