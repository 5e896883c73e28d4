"""Content-fingerprint change detection. State is lost on restart."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


def fingerprint(content: bytes) -> str:
    """Compute the SHA-256 hex digest of raw content."""
    return hashlib.sha256(content).hexdigest()


def _read_file(path: str) -> bytes:
    return Path(path).read_bytes()


class ChangeDetector:
    """Track content fingerprints per path across polling cycles.

    A path that has never been seen counts as changed, so a fresh process
    reports every path as changed on its first cycle.
    """

    def __init__(self, read_bytes: Callable[[str], bytes] = _read_file) -> None:
        self._read_bytes = read_bytes
        self._fingerprints: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._fingerprints)

    def __contains__(self, path: object) -> bool:
        return path in self._fingerprints

    def has_changed(self, path: str, content: bytes) -> bool:
        """Record the fingerprint of ``content`` and report whether it differs from the last one."""
        new = fingerprint(content)
        old = self._fingerprints.get(path)
        self._fingerprints[path] = new
        return old is None or old != new

    def forget(self, path: str) -> None:
        """Drop the fingerprint so ``path`` is reported as changed next time."""
        self._fingerprints.pop(path, None)

    def changed_paths(self, paths: Iterable[str | Path]) -> list[str]:
        """Return the paths whose content changed, preserving input order.

        Unreadable paths are logged and left out.
        """
        changed: list[str] = []
        for raw in paths:
            path = str(raw)
            try:
                content = self._read_bytes(path)
            except OSError as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                continue
            if self.has_changed(path, content):
                changed.append(path)
        return changed
