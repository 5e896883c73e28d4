"""Grafana HTTP API client."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from dashsync.exceptions import (
    FolderConflictError,
    GrafanaAPIError,
    GrafanaAuthError,
    GrafanaUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

FOLDER_LIST_LIMIT = 1000
GENERAL_FOLDER_ID = 0
_CONFLICT_STATUSES = frozenset({409, 412})
_AUTH_STATUSES = frozenset({401, 403})


@dataclass(frozen=True)
class RemoteFolder:
    """A folder as reported by Grafana."""

    id: int
    uid: str
    title: str
    parent_uid: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteFolder:
        """Build a folder from an API item. A missing ``parentUid`` means top level."""
        return cls(
            id=int(data["id"]),
            uid=str(data["uid"]),
            title=str(data.get("title", "")),
            parent_uid=str(data.get("parentUid") or ""),
        )


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    """Translate a non-2xx response into the matching GrafanaAPIError subclass."""
    if resp.status_code < 300:
        return
    body = resp.text.strip()
    if resp.status_code in _AUTH_STATUSES:
        raise GrafanaAuthError(resp.status_code, body, action)
    if resp.status_code in _CONFLICT_STATUSES:
        raise FolderConflictError(resp.status_code, body, action)
    raise GrafanaAPIError(resp.status_code, body, action)


def _json_body(resp: httpx.Response, action: str) -> Any:
    """Decode a JSON body, reporting malformed responses as GrafanaAPIError."""
    try:
        return resp.json()
    except ValueError as exc:
        body = resp.text.strip()[:200]
        raise GrafanaAPIError(resp.status_code, f"invalid JSON response: {body}", action) from exc


def _parse_folder(item: Any, action: str, status_code: int) -> RemoteFolder:
    try:
        return RemoteFolder.from_api(item)
    except (KeyError, TypeError, ValueError) as exc:
        raise GrafanaAPIError(status_code, f"malformed folder {item!r}", action) from exc


class GrafanaClient:
    """Synchronous client for the subset of the Grafana API dashsync needs.

    Requests authenticate with the bearer token when one is configured and
    fall back to basic auth otherwise. Service-account management always
    uses basic auth.
    """

    def __init__(
        self,
        url: str,
        token: str = "",
        user: str = "",
        password: str = "",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.url = url.rstrip("/")
        self.token = token
        self.user = user
        self.password = password
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self.client = httpx.Client(base_url=self.url, timeout=timeout, transport=transport)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> GrafanaClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def with_token(self, token: str) -> GrafanaClient:
        """Return a new client for the same server authenticating with ``token``."""
        return GrafanaClient(
            self.url,
            token=token,
            user=self.user,
            password=self.password,
            timeout=self._timeout,
            transport=self._transport,
            sleep=self._sleep,
        )

    def _auth_kwargs(self, basic: bool) -> dict[str, Any]:
        if self.token and not basic:
            return {"headers": {"Authorization": f"Bearer {self.token}"}}
        if self.user or self.password:
            return {"auth": (self.user, self.password)}
        return {}

    def _request(
        self,
        method: str,
        path: str,
        *,
        basic: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping transport failures to GrafanaUnavailableError."""
        merged = self._auth_kwargs(basic)
        if "headers" in kwargs:
            merged.setdefault("headers", {}).update(kwargs.pop("headers"))
        merged.update(kwargs)
        try:
            return self.client.request(method, path, **merged)
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise GrafanaUnavailableError(msg) from exc

    # ── Readiness and auth ───────────────────────────────

    def health(self) -> bool:
        """Return True when ``/api/health`` answers 200."""
        try:
            resp = self._request("GET", "/api/health")
        except GrafanaUnavailableError as exc:
            logger.warning("Grafana not ready: %s", exc)
            return False
        if resp.status_code != 200:
            logger.warning("Grafana returned status: %d", resp.status_code)
            return False
        return True

    def wait_for_ready(self, timeout: float, interval: float = 2.0) -> None:
        """Poll the health endpoint until it answers or ``timeout`` elapses."""
        logger.info("Waiting for Grafana API at %s", self.url)
        deadline = time.monotonic() + timeout
        while True:
            if self.health():
                logger.info("Grafana API is ready")
                return
            if time.monotonic() >= deadline:
                msg = f"Grafana API did not become ready within {timeout:g}s"
                raise GrafanaUnavailableError(msg)
            self._sleep(interval)

    def validate_auth(self, attempts: int = 30, interval: float = 2.0) -> None:
        """Check that the basic-auth credentials are accepted.

        Raises GrafanaAuthError immediately on 401; other failures are retried.
        """
        logger.info("Validating Grafana credentials")
        for _ in range(attempts):
            try:
                resp = self._request("GET", "/api/user", basic=True)
            except GrafanaUnavailableError as exc:
                logger.warning("Network error: %s", exc)
            else:
                if resp.status_code == 200:
                    logger.info("Grafana authentication OK")
                    return
                if resp.status_code == 401:
                    raise GrafanaAuthError(401, "invalid credentials", "authentication")
                logger.warning("Grafana auth returned %d: %s", resp.status_code, resp.text)
            self._sleep(interval)
        msg = "Grafana authentication check timed out"
        raise GrafanaUnavailableError(msg)

    # ── Folders ──────────────────────────────────────────

    def list_folders(self, parent_uid: str = "") -> list[RemoteFolder]:
        """List the folders directly under ``parent_uid`` (top level when empty)."""
        params: dict[str, str | int] = {"limit": FOLDER_LIST_LIMIT}
        if parent_uid:
            params["parentUid"] = parent_uid
        resp = self._request("GET", "/api/folders", params=params)
        action = "list folders"
        _raise_for_status(resp, action)
        items = _json_body(resp, action)
        if not isinstance(items, list):
            raise GrafanaAPIError(resp.status_code, f"expected a folder list: {items!r}", action)
        return [_parse_folder(item, action, resp.status_code) for item in items]

    def find_folder(self, title: str, parent_uid: str = "") -> RemoteFolder | None:
        """Return the first folder named ``title`` whose parent is ``parent_uid``.

        The parent is checked against the ``parentUid`` Grafana reports for each
        folder, not just the query filter.
        """
        for folder in self.list_folders(parent_uid):
            if folder.title == title and folder.parent_uid == parent_uid:
                return folder
        return None

    def create_folder(self, title: str, parent_uid: str = "") -> RemoteFolder:
        """Create a folder. Raises FolderConflictError when it already exists."""
        payload = {"title": title}
        if parent_uid:
            payload["parentUid"] = parent_uid
        resp = self._request("POST", "/api/folders", json=payload)
        action = f"create folder {title!r}"
        _raise_for_status(resp, action)
        data = _json_body(resp, action)
        if not isinstance(data, dict):
            raise GrafanaAPIError(resp.status_code, f"expected a folder: {data!r}", action)
        created = _parse_folder({"title": title, **data}, action, resp.status_code)
        return RemoteFolder(created.id, created.uid, created.title, parent_uid)

    # ── Dashboards ───────────────────────────────────────

    def upsert_dashboard(
        self,
        dashboard: dict[str, Any],
        folder_id: int = GENERAL_FOLDER_ID,
        message: str | None = None,
    ) -> None:
        """Create or overwrite a dashboard in ``folder_id``. The response body is not used."""
        body: dict[str, Any] = {
            "dashboard": dashboard,
            "folderId": folder_id,
            "overwrite": True,
        }
        if message:
            body["message"] = message
        resp = self._request("POST", "/api/dashboards/db", json=body)
        _raise_for_status(resp, "upload dashboard")

    # ── Service accounts ─────────────────────────────────

    def create_service_account_token(
        self,
        account_name: str,
        token_name: str,
        ready_timeout: float = 120.0,
    ) -> str:
        """Ensure a service account exists and issue a fresh token for it."""
        account_id = self._ensure_service_account(account_name)
        token = self._create_or_replace_token(account_id, token_name)
        self._wait_for_token(token, ready_timeout)
        logger.info("Service account token ready")
        return token

    def _ensure_service_account(self, account_name: str) -> int:
        resp = self._request("GET", "/api/serviceaccounts/search", basic=True)
        _raise_for_status(resp, "list service accounts")
        for account in _json_body(resp, "list service accounts").get("serviceAccounts", []):
            if account.get("name") == account_name:
                return int(account["id"])

        resp = self._request(
            "POST",
            "/api/serviceaccounts",
            basic=True,
            json={"name": account_name, "role": "Admin"},
        )
        _raise_for_status(resp, "create service account")
        logger.info("Service account created: %s", account_name)
        return int(_json_body(resp, "create service account")["id"])

    def _create_or_replace_token(self, account_id: int, token_name: str) -> str:
        tokens_path = f"/api/serviceaccounts/{account_id}/tokens"
        resp = self._request("GET", tokens_path, basic=True)
        _raise_for_status(resp, "list service account tokens")
        for existing in _json_body(resp, "list service account tokens"):
            if existing.get("name") != token_name:
                continue
            try:
                delete_resp = self._request(
                    "DELETE", f"{tokens_path}/{existing['id']}", basic=True
                )
                _raise_for_status(delete_resp, "delete service account token")
            except (GrafanaUnavailableError, GrafanaAPIError) as exc:
                logger.warning("Failed to delete old token %s: %s", token_name, exc)
            else:
                logger.info("Old token deleted: %s", token_name)
            break

        resp = self._request("POST", tokens_path, basic=True, json={"name": token_name})
        _raise_for_status(resp, "create service account token")
        logger.info("Token created: %s", token_name)
        key: str = _json_body(resp, "create service account token")["key"]
        return key

    def _wait_for_token(self, token: str, timeout: float, interval: float = 1.0) -> None:
        deadline = time.monotonic() + timeout
        headers = {"Authorization": f"Bearer {token}"}
        while True:
            try:
                resp = self.client.get("/api/folders", headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("Grafana request failed: %s", exc)
            else:
                if resp.status_code == 200:
                    return
                if resp.status_code in _AUTH_STATUSES:
                    raise GrafanaAuthError(resp.status_code, resp.text, "service account token")
                logger.warning("Grafana responded with %d: %s", resp.status_code, resp.text)
            if time.monotonic() >= deadline:
                msg = f"Service account token not ready within {timeout:g}s"
                raise GrafanaUnavailableError(msg)
            self._sleep(interval)
