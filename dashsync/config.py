"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_SENSITIVE_PATTERNS = (
    "password",
    "pass",
    "token",
    "secret",
    "key",
    "private",
    "credential",
    "ssh",
    "cert",
)


class Settings(BaseSettings):
    """Dashsync sidecar settings.

    Environment variable names follow the Grafana sidecar conventions
    (``GIT_*``, ``GRAFANA_*``, ``GF_SECURITY_*``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Git source
    repo_url: str = Field(default="", validation_alias="GIT_REPO_URL")
    branch: str = Field(default="main", validation_alias="GIT_BRANCH")
    ssh_key: str = Field(default="", validation_alias="GIT_SSH_KEY")
    https_user: str = Field(default="", validation_alias="GIT_HTTPS_USER")
    https_password: str = Field(default="", validation_alias="GIT_HTTPS_PASS")
    repo_dir: Path = Field(default=Path("/tmp/grafana_data"), validation_alias="GIT_LOCAL_REPO_DIR")
    repo_subdir: str = Field(default="", validation_alias="GIT_REPO_SUBDIR")
    dashboards_dir: Path = Field(
        default=Path("/tmp/grafana_dashboards"), validation_alias="DASHBOARDS_DIR"
    )
    poll_interval_sec: int = Field(default=60, ge=1, validation_alias="POLL_INTERVAL_SEC")

    # Grafana
    grafana_url: str = Field(default="", validation_alias="GRAFANA_URL")
    grafana_user: str = Field(default="", validation_alias="GF_SECURITY_ADMIN_USER")
    grafana_password: str = Field(default="", validation_alias="GF_SECURITY_ADMIN_PASSWORD")
    grafana_token: str = Field(default="", validation_alias="GF_SECURITY_TOKEN")
    grafana_timeout_sec: float = Field(default=10.0, gt=0, validation_alias="GRAFANA_TIMEOUT_SEC")
    grafana_ready_timeout_sec: float = Field(
        default=120.0, gt=0, validation_alias="GRAFANA_READY_TIMEOUT_SEC"
    )
    service_account_name: str = Field(default="git-sync-sa", validation_alias="GRAFANA_SA_NAME")
    service_account_token_name: str = Field(
        default="git-sync-token", validation_alias="GRAFANA_SA_TOKEN_NAME"
    )

    # Health server
    host: str = Field(default="0.0.0.0", validation_alias="HEALTH_HOST")
    port: int = Field(default=8080, ge=1, le=65535, validation_alias="HEALTH_PORT")

    @property
    def source_dir(self) -> Path:
        """Directory inside the checkout that holds the dashboard tree."""
        if self.repo_subdir in ("", "."):
            return self.repo_dir
        return self.repo_dir / self.repo_subdir

    @property
    def has_git_auth(self) -> bool:
        return bool(self.ssh_key) or bool(self.https_user and self.https_password)

    @property
    def has_grafana_auth(self) -> bool:
        return bool(self.grafana_token) or bool(self.grafana_user and self.grafana_password)

    def validate_runtime(self) -> None:
        """Validate that the sidecar has everything it needs to start."""
        violations: list[str] = []
        if not self.repo_url:
            violations.append("GIT_REPO_URL must be set")
        if not self.grafana_url:
            violations.append("GRAFANA_URL must be set")
        if not self.has_git_auth:
            violations.append(
                "no Git authentication provided (GIT_SSH_KEY or GIT_HTTPS_USER/GIT_HTTPS_PASS)"
            )
        if not self.has_grafana_auth:
            violations.append(
                "no Grafana authentication provided "
                "(GF_SECURITY_TOKEN or GF_SECURITY_ADMIN_USER/GF_SECURITY_ADMIN_PASSWORD)"
            )

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")

    def safe_for_log(self) -> dict[str, Any]:
        """Return the settings as a dict with credentials masked."""
        masked: dict[str, Any] = {}
        for name, value in self.model_dump().items():
            lowered = name.lower()
            if any(p in lowered for p in _SENSITIVE_PATTERNS) and isinstance(value, str) and value:
                masked[name] = "***"
            else:
                masked[name] = value
        return masked
