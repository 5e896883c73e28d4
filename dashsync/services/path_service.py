"""Folder path classification for dashboard files."""

from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from os import PathLike

ROOT_FOLDER = ""


def split_path(path: str | PathLike[str]) -> list[str]:
    """Split a path into segments, accepting both ``/`` and ``\\`` as separators.

    Empty and ``.`` segments are dropped and ``..`` is resolved lexically.
    """
    text = str(path).replace("\\", "/")
    normalized = posixpath.normpath(text) if text else ""
    return [part for part in normalized.split("/") if part not in ("", ".")]


def join_path(segments: list[str]) -> str:
    """Join segments into the canonical slash-separated form."""
    return "/".join(segments)


def classify(base_path: str | PathLike[str], file_path: str | PathLike[str]) -> str:
    """Return the folder path of ``file_path`` relative to ``base_path``.

    The result uses ``/`` separators and is ``""`` when the file sits directly
    in ``base_path``. Raises ValueError when the file is not under ``base_path``.
    """
    base = split_path(base_path)
    directory = split_path(file_path)[:-1]
    if directory[: len(base)] != base:
        msg = f"{file_path} is not inside {base_path}"
        raise ValueError(msg)
    return join_path(directory[len(base) :])
