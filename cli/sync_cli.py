"""Command-line interface for one-off dashboard syncs."""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path
from urllib.parse import urlparse

from dashsync.config import Settings
from dashsync.exceptions import SourceError
from dashsync.grafana.client import GrafanaClient
from dashsync.services.folder_graph import FolderNode, build_folder_forest
from dashsync.services.path_service import classify
from dashsync.services.source_service import DashboardSource, iter_dashboard_files
from dashsync.services.sync_service import SyncReport, SyncService

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_grafana_url(grafana_url: str, allow_insecure_http: bool = False) -> str:
    """Validate the Grafana URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = grafana_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Grafana URL must include scheme and host (e.g. https://grafana.example.com)"
        )

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def format_forest(roots: list[FolderNode]) -> list[str]:
    """Render folder trees as indented lines."""
    lines: list[str] = []
    stack: list[tuple[FolderNode, int]] = [(root, 0) for root in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        lines.append(f"{'  ' * depth}{node.name}/")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return lines


def plan(content_dir: Path) -> None:
    """Print the folder forest and the folder of every dashboard."""
    files = iter_dashboard_files(content_dir)
    forest = build_folder_forest(files, content_dir)
    print(f"Dashboards: {len(files)}")
    print(f"Folders:    {len(forest)}")
    for line in format_forest(forest.roots()):
        print(f"  {line}")
    for path in files:
        folder = classify(content_dir, path) or "(General)"
        print(f"    {path.relative_to(content_dir)} -> {folder}")


def print_report(report: SyncReport) -> None:
    for path in report.uploaded:
        print(f"  Upload: {path}")
    for path, error in report.skipped.items():
        print(f"  Skip: {path} ({error})")
    for path, error in report.failed.items():
        print(f"  FAILED: {path} ({error})")
    for result in report.folder_errors:
        print(f"  FOLDER FAILED: {result.failed_path} ({result.error})")
    print(
        f"Sync complete. {len(report.uploaded)} of {len(report.changed)} changed "
        f"dashboard(s) uploaded, {len(report.failed)} failure(s)."
    )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dashsync-cli",
        description="Sync a local dashboard directory with Grafana",
    )
    parser.add_argument("--dir", "-d", default=".", help="Dashboard directory (default: current)")
    parser.add_argument("--grafana-url", "-s", help="Grafana URL (default: $GRAFANA_URL)")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// Grafana URLs for non-localhost hosts",
    )
    parser.add_argument("--token", help="Service account token (default: $GF_SECURITY_TOKEN)")
    parser.add_argument("--user", "-u", help="Username for basic authentication")
    parser.add_argument("--password", "-p", help="Password for basic authentication")
    parser.add_argument("--message", "-m", help="Version message attached to uploads")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("plan", help="Show the folder tree without contacting Grafana")
    subparsers.add_parser("sync", help="Upload all dashboards once")
    subparsers.add_parser("serve", help="Run the sidecar (git polling and health endpoint)")

    args = parser.parse_args(argv)
    content_dir = Path(args.dir).resolve()

    if args.command == "plan":
        plan(content_dir)
        return

    if args.command == "serve":
        from dashsync.main import cli_entry

        cli_entry()
        return

    if args.command != "sync":
        parser.print_help()
        return

    settings = Settings()
    configured_url = args.grafana_url or settings.grafana_url
    if not configured_url:
        print("Error: No Grafana URL configured. Pass --grafana-url or set GRAFANA_URL.")
        sys.exit(1)
    try:
        grafana_url = validate_grafana_url(configured_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    token = args.token or settings.grafana_token
    user = args.user or settings.grafana_user
    password = args.password or settings.grafana_password
    if not token:
        if not user:
            user = input("Username: ")
        if not password:
            password = getpass.getpass("Password: ")

    source = DashboardSource(content_dir, content_dir)
    with GrafanaClient(grafana_url, token=token, user=user, password=password) as client:
        service = SyncService(source, client)
        try:
            report = service.run_pass(args.message)
        except SourceError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
    print_report(report)
    if not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
