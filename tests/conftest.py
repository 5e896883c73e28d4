"""Shared test fixtures for dashsync."""

from __future__ import annotations

import base64
import json
import subprocess
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from dashsync.grafana.client import GrafanaClient

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

GRAFANA_URL = "http://grafana.test"
ADMIN_USER = "admin"
ADMIN_PASSWORD = "admin-password"
TEST_TOKEN = "test-token"


class FakeGrafana:
    """In-memory stand-in for the Grafana HTTP API, served through httpx.MockTransport.

    Failure injection:
    - ``fail_create``: folder titles whose create call answers 500.
    - ``race_create``: folder titles created by "someone else" right before our
      create call, which then answers 409.
    - ``phantom_conflict``: folder titles whose create answers 409 although no
      such folder is visible afterwards.
    - ``fail_upload``: dashboard titles whose upload answers 500.
    - ``upload_text``: when set, successful uploads answer with this non-JSON body.
    - ``ignore_parent_filter``: folder listings return every folder regardless
      of ``parentUid``.
    """

    def __init__(self) -> None:
        self.healthy = True
        self.folders: dict[str, dict[str, Any]] = {}
        self.dashboards: dict[str, dict[str, Any]] = {}
        self.uploads: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str]] = []
        self.tokens: set[str] = {TEST_TOKEN}
        self.service_accounts: list[dict[str, Any]] = []
        self.sa_tokens: dict[int, list[dict[str, Any]]] = {}
        self.fail_create: set[str] = set()
        self.race_create: set[str] = set()
        self.phantom_conflict: set[str] = set()
        self.fail_upload: set[str] = set()
        self.upload_text: str | None = None
        self.ignore_parent_filter = False
        self._next_id = 1

    # ── Helpers for tests ────────────────────────────────

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def add_folder(self, title: str, parent_uid: str = "") -> dict[str, Any]:
        folder_id = self._next_id
        self._next_id += 1
        folder = {"id": folder_id, "uid": f"uid-{folder_id}", "title": title}
        if parent_uid:
            folder["parentUid"] = parent_uid
        self.folders[folder["uid"]] = folder
        return folder

    def folder_titles(self, parent_uid: str = "") -> list[str]:
        return [
            folder["title"]
            for folder in self.folders.values()
            if folder.get("parentUid", "") == parent_uid
        ]

    def folder_path_of(self, folder_id: int) -> str:
        """Return the slash-joined titles from the top level down to ``folder_id``."""
        by_id = {folder["id"]: folder for folder in self.folders.values()}
        names: list[str] = []
        folder: dict[str, Any] | None = by_id[folder_id]
        while folder is not None:
            names.append(folder["title"])
            folder = self.folders.get(folder.get("parentUid", ""))
        return "/".join(reversed(names))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ── Request handling ─────────────────────────────────

    def _is_basic(self, request: httpx.Request) -> bool:
        expected = base64.b64encode(f"{ADMIN_USER}:{ADMIN_PASSWORD}".encode()).decode()
        return request.headers.get("Authorization") == f"Basic {expected}"

    def _is_authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        if header.startswith("Bearer "):
            return header.removeprefix("Bearer ") in self.tokens
        return self._is_basic(request)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.calls.append((method, path))

        if path == "/api/health":
            if not self.healthy:
                return httpx.Response(503, json={"database": "failing"})
            return httpx.Response(200, json={"database": "ok"})

        if not self._is_authorized(request):
            return httpx.Response(401, json={"message": "Unauthorized"})

        if path == "/api/user" and method == "GET":
            return httpx.Response(200, json={"login": ADMIN_USER})
        if path == "/api/folders" and method == "GET":
            parent_uid = request.url.params.get("parentUid", "")
            matches = [
                folder
                for folder in self.folders.values()
                if self.ignore_parent_filter or folder.get("parentUid", "") == parent_uid
            ]
            return httpx.Response(200, json=matches)
        if path == "/api/folders" and method == "POST":
            return self._create_folder(json.loads(request.content))
        if path == "/api/dashboards/db" and method == "POST":
            return self._upload_dashboard(json.loads(request.content))
        if path.startswith("/api/serviceaccounts"):
            if not self._is_basic(request):
                return httpx.Response(403, json={"message": "Forbidden"})
            return self._service_accounts(request)
        return httpx.Response(404, json={"message": "Not found"})

    def _create_folder(self, body: dict[str, Any]) -> httpx.Response:
        title = body["title"]
        parent_uid = body.get("parentUid", "")
        if parent_uid and parent_uid not in self.folders:
            return httpx.Response(400, json={"message": "parent folder not found"})
        if title in self.fail_create:
            return httpx.Response(500, json={"message": "internal error"})
        if title in self.phantom_conflict:
            return httpx.Response(409, json={"message": "a folder with that name exists"})
        if title in self.race_create:
            self.race_create.discard(title)
            self.add_folder(title, parent_uid)
            return httpx.Response(409, json={"message": "a folder with that name exists"})
        if title in self.folder_titles(parent_uid):
            return httpx.Response(409, json={"message": "a folder with that name exists"})
        return httpx.Response(200, json=self.add_folder(title, parent_uid))

    def _upload_dashboard(self, body: dict[str, Any]) -> httpx.Response:
        dashboard = body["dashboard"]
        title = dashboard.get("title", "")
        if title in self.fail_upload:
            return httpx.Response(500, json={"message": "internal error"})
        folder_id = body.get("folderId", 0)
        if folder_id and folder_id not in {f["id"] for f in self.folders.values()}:
            return httpx.Response(400, json={"message": "folder not found"})
        self.uploads.append(body)
        uid = dashboard.get("uid") or f"dash-{len(self.dashboards) + 1}"
        self.dashboards[uid] = body
        if self.upload_text is not None:
            return httpx.Response(200, text=self.upload_text)
        return httpx.Response(200, json={"status": "success", "uid": uid, "version": 1})

    def _service_accounts(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        parts = request.url.path.strip("/").split("/")
        if parts == ["api", "serviceaccounts", "search"] and method == "GET":
            return httpx.Response(200, json={"serviceAccounts": self.service_accounts})
        if parts == ["api", "serviceaccounts"] and method == "POST":
            account = {"id": self._next_id, **json.loads(request.content)}
            self._next_id += 1
            self.service_accounts.append(account)
            return httpx.Response(201, json=account)
        account_id = int(parts[2])
        tokens = self.sa_tokens.setdefault(account_id, [])
        if len(parts) == 4 and method == "GET":
            return httpx.Response(200, json=[{"id": t["id"], "name": t["name"]} for t in tokens])
        if len(parts) == 4 and method == "POST":
            token_id = self._next_id
            self._next_id += 1
            key = f"glsa_{token_id}"
            body = json.loads(request.content)
            tokens.append({"id": token_id, "name": body["name"], "key": key})
            self.tokens.add(key)
            return httpx.Response(200, json={"id": token_id, "name": body["name"], "key": key})
        if len(parts) == 5 and method == "DELETE":
            token_id = int(parts[4])
            for token in list(tokens):
                if token["id"] == token_id:
                    tokens.remove(token)
                    self.tokens.discard(token["key"])
            return httpx.Response(200, json={"message": "deleted"})
        return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture
def fake_grafana() -> FakeGrafana:
    return FakeGrafana()


@pytest.fixture
def grafana_client(fake_grafana: FakeGrafana) -> Generator[GrafanaClient]:
    """Client authenticated with the pre-provisioned test token."""
    client = GrafanaClient(
        GRAFANA_URL,
        token=TEST_TOKEN,
        transport=fake_grafana.transport(),
        sleep=lambda _: None,
    )
    yield client
    client.close()


@pytest.fixture
def admin_client(fake_grafana: FakeGrafana) -> Generator[GrafanaClient]:
    """Client authenticated with admin basic-auth credentials only."""
    client = GrafanaClient(
        GRAFANA_URL,
        user=ADMIN_USER,
        password=ADMIN_PASSWORD,
        transport=fake_grafana.transport(),
        sleep=lambda _: None,
    )
    yield client
    client.close()


@pytest.fixture
def write_dashboard() -> Callable[..., Path]:
    """Return a helper that writes a dashboard JSON file, creating parent dirs."""

    def _write(path: Path, title: str | None = None, **extra: Any) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = {"title": title or path.stem, **extra}
        path.write_text(json.dumps(content))
        return path

    return _write


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` with a fixed identity, returning stdout."""
    result = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test Author",
            "-c",
            "user.email=author@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


@pytest.fixture
def upstream_repo(tmp_path: Path, write_dashboard: Callable[..., Path]) -> Path:
    """A git repository on branch ``main`` holding two dashboards."""
    repo = tmp_path / "upstream"
    repo.mkdir()
    git(repo, "init", "-q", "-b", "main")
    write_dashboard(repo / "dashboards" / "overview.json", "Overview")
    write_dashboard(repo / "dashboards" / "team-a" / "latency.json", "Latency")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "Add dashboards\n\nInitial import.")
    return repo
