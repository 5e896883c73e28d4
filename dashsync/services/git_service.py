"""Git service: dashboard repository checkout via git CLI."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from dashsync.exceptions import SourceError

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 120
_SHORT_HASH_LENGTH = 7
_LOG_FORMAT = "%H%x00%an%x00%ae%x00%aI%x00%B"


@dataclass(frozen=True)
class CommitInfo:
    """Metadata of a single commit."""

    hash: str
    message: str
    author: str
    email: str
    timestamp: datetime

    @property
    def short_hash(self) -> str:
        return self.hash[:_SHORT_HASH_LENGTH]


def version_message(info: CommitInfo | None) -> str | None:
    """Build the dashboard version message that links an upload to its commit.

    The full commit message is kept, body included.
    """
    if info is None:
        return None
    return f"commit {info.short_hash}: {info.message} - {info.author}"


def _is_ssh_url(url: str) -> bool:
    return url.startswith(("ssh://", "git@"))


def _with_credentials(url: str, user: str, password: str) -> str:
    """Embed HTTPS credentials in ``url``."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(user, safe='')}:{quote(password, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class GitService:
    """Wraps git CLI operations on the local dashboard checkout.

    Authentication uses the SSH key for ``ssh://`` and ``git@`` URLs and the
    HTTPS credentials for ``http(s)://`` URLs. Other URLs (local paths,
    ``file://``) are used as given.
    """

    def __init__(
        self,
        repo_url: str,
        branch: str,
        repo_dir: Path,
        ssh_key: str = "",
        https_user: str = "",
        https_password: str = "",
    ) -> None:
        self.repo_url = repo_url
        self.branch = branch
        self.repo_dir = repo_dir
        self._secrets = [s for s in (https_password, quote(https_password, safe="")) if s]
        self._key_dir: str | None = None
        self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        self._remote_url = repo_url

        if ssh_key and _is_ssh_url(repo_url):
            key_path = self._write_ssh_key(ssh_key)
            self._env["GIT_SSH_COMMAND"] = (
                f"ssh -i {key_path} -o IdentitiesOnly=yes "
                "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null"
            )
            logger.info("Using SSH auth with key from environment")
        elif https_user and https_password and repo_url.startswith(("http://", "https://")):
            self._remote_url = _with_credentials(repo_url, https_user, https_password)
            logger.info("Using HTTPS auth")

    def _write_ssh_key(self, ssh_key: str) -> str:
        key = ssh_key.replace("\\n", "\n")
        if not key.strip():
            msg = "SSH key is empty"
            raise ValueError(msg)
        if not key.endswith("\n"):
            key += "\n"
        self._key_dir = tempfile.mkdtemp(prefix="dashsync-ssh-")
        key_path = os.path.join(self._key_dir, "id_key")
        with open(key_path, "w", encoding="utf-8") as f:
            f.write(key)
        os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)
        logger.info("SSH key written, length: %d bytes", len(key))
        return key_path

    def close(self) -> None:
        """Remove the temporary SSH key, if any."""
        if self._key_dir is not None:
            shutil.rmtree(self._key_dir, ignore_errors=True)
            self._key_dir = None

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text

    def _run(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command, redacting credentials from any failure."""
        result = subprocess.run(
            ["git", *args],
            cwd=cwd or self.repo_dir,
            env=self._env,
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT_SECONDS,
            check=False,
        )
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                self._redact(" ".join(["git", *args])),
                output=self._redact(result.stdout),
                stderr=self._redact(result.stderr),
            )
        return result

    @property
    def is_cloned(self) -> bool:
        return (self.repo_dir / ".git").is_dir()

    def clone(self) -> None:
        """Replace the local checkout with a fresh shallow clone of the branch."""
        logger.info("Cloning %s (branch %s) into %s", self.repo_url, self.branch, self.repo_dir)
        if self.repo_dir.exists():
            shutil.rmtree(self.repo_dir)
        self.repo_dir.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._run(
                "clone",
                "--depth",
                "1",
                "--single-branch",
                "--branch",
                self.branch,
                self._remote_url,
                str(self.repo_dir),
                cwd=self.repo_dir.parent,
            )
        except subprocess.CalledProcessError as exc:
            logger.error(
                "Failed to clone repo (exit %d): %s",
                exc.returncode,
                exc.stderr.strip() if exc.stderr else "no stderr",
            )
            raise
        logger.info("Repo cloned successfully")

    def fetch_latest_commit(self) -> str:
        """Bring the checkout up to date with the remote branch and return HEAD."""
        if not self.is_cloned:
            msg = f"Repository not initialized at {self.repo_dir}, clone it first"
            raise SourceError(msg)
        self._run("fetch", "--depth", "1", "origin", self.branch)
        self._run("reset", "--hard", "FETCH_HEAD")
        self._run("clean", "-fdq")
        head = self.head_commit()
        if head is None:
            msg = f"Repository at {self.repo_dir} has no commits"
            raise SourceError(msg)
        return head

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def commit_info(self) -> CommitInfo:
        """Return metadata of the HEAD commit."""
        result = self._run("log", "-1", f"--format={_LOG_FORMAT}")
        commit_hash, author, email, date, message = result.stdout.split("\x00", 4)
        return CommitInfo(
            hash=commit_hash.strip(),
            message=message.strip(),
            author=author,
            email=email,
            timestamp=datetime.fromisoformat(date),
        )
