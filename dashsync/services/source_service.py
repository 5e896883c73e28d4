"""Dashboard source tree: materialization from the checkout and parsing."""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dashsync.exceptions import SourceError
from dashsync.services.path_service import classify

logger = logging.getLogger(__name__)

DASHBOARD_SUFFIX = ".json"


@dataclass(frozen=True)
class Dashboard:
    """A parsed dashboard file.

    ``folder_path`` is always derived from ``source_path`` and ``base_path``.
    """

    source_path: str
    base_path: str
    content: dict[str, Any]

    @property
    def folder_path(self) -> str:
        return classify(self.base_path, self.source_path)

    @property
    def title(self) -> str:
        return str(self.content.get("title", ""))


def parse_dashboard(raw: bytes, source: str) -> dict[str, Any]:
    """Parse dashboard JSON. Raises ValueError unless it is a JSON object."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        msg = f"invalid JSON in {source}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"dashboard {source} must be a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def load_dashboard(file_path: str | Path, base_path: str | Path) -> Dashboard:
    """Read and parse a dashboard file.

    Raises OSError when the file cannot be read and ValueError when it is not a
    valid dashboard or lies outside ``base_path``.
    """
    path = str(file_path)
    content = parse_dashboard(Path(path).read_bytes(), path)
    dashboard = Dashboard(source_path=path, base_path=str(base_path), content=content)
    # Raises ValueError for files outside base_path.
    _ = dashboard.folder_path
    return dashboard


def iter_dashboard_files(root: Path) -> list[Path]:
    """Return all ``*.json`` files below ``root``, skipping hidden entries."""
    found: list[Path] = []
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for filename in sorted(files):
            if filename.startswith(".") or not filename.endswith(DASHBOARD_SUFFIX):
                continue
            found.append(Path(current) / filename)
    return found


class DashboardSource:
    """Copies dashboard files from the checkout into the dashboards directory."""

    def __init__(self, source_dir: Path, dashboards_dir: Path) -> None:
        self.source_dir = source_dir
        self.dashboards_dir = dashboards_dir

    def read_bytes(self, path: str | Path) -> bytes:
        return Path(path).read_bytes()

    def list_dashboard_paths(self) -> list[Path]:
        """Return the dashboards currently present in the dashboards directory."""
        if not self.dashboards_dir.is_dir():
            return []
        return iter_dashboard_files(self.dashboards_dir)

    def materialize(self) -> list[Path]:
        """Copy every valid dashboard into the dashboards directory.

        Invalid or unreadable files are logged and skipped. Returns the
        destination paths of the copied dashboards.
        """
        if not self.source_dir.is_dir():
            msg = f"Dashboard source directory does not exist: {self.source_dir}"
            raise SourceError(msg)

        logger.info("Updating dashboards from %s", self.source_dir)
        copied: list[Path] = []
        for path in iter_dashboard_files(self.source_dir):
            destination = self.dashboards_dir / path.relative_to(self.source_dir)
            try:
                raw = path.read_bytes()
            except OSError as exc:
                logger.error("Failed to read file %s: %s", path, exc)
                continue
            try:
                parse_dashboard(raw, str(path))
            except ValueError as exc:
                logger.error("Skipping %s: %s", path, exc)
                continue
            if destination == path:
                copied.append(destination)
                continue
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(path, destination)
            except OSError as exc:
                logger.error("Failed to write file %s: %s", destination, exc)
                continue
            logger.debug("Dashboard updated: %s", destination)
            copied.append(destination)
        return copied
