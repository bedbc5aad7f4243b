"""CLI client for browsing and changing a GitDrive repository."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from gitdrive.config import Settings
from gitdrive.exceptions import DriveError, NotFoundError
from gitdrive.filesystem.directory import create_directory, find_entry, resolve_file_type
from gitdrive.filesystem.entry import normalize_path, parent_path
from gitdrive.main import create_http_client
from gitdrive.services.batch_service import (
    BatchItemResult,
    BatchResult,
    check_selection_size,
    delete_selection,
    upload_entries,
)
from gitdrive.services.mutation_service import (
    MutationOutcome,
    MutationStatus,
    download_file,
    move_file,
    rename_file,
    upload_file,
)
from gitdrive.services.tree_service import SortKey, TreeView, ViewFilter
from gitdrive.storage.blob_client import GitHubBlobStore, StaticCredential
from gitdrive.storage.session import DriveSession

if TYPE_CHECKING:
    from gitdrive.filesystem.entry import Entry

CONFIG_FILE = ".gitdrive.json"


def load_config(dir_path: Path) -> dict[str, str]:
    """Load drive config from file."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    """Save drive config to file."""
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def format_size(size: int) -> str:
    """Human-readable size, e.g. ``1.5 KB``."""
    if not size:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}".replace(".0 ", " ")
        value /= 1024
    return f"{value:.1f} GB".replace(".0 ", " ")


def format_entry(entry: Entry) -> str:
    if entry.is_dir:
        return f"  [dir]  {entry.name}/"
    category = resolve_file_type(entry.name)
    return f"  {category:<8} {entry.name}  ({format_size(entry.size)})"


def _print_outcome(outcome: MutationOutcome) -> None:
    for step in outcome.steps:
        line = f"    {step.action:<6} {step.path}: {step.state}"
        if step.error is not None:
            line += f" ({step.error})"
        elif step.note:
            line += f" ({step.note})"
        print(line)


def _print_item(index: int, total: int, item: BatchItemResult) -> None:
    if item.ok:
        print(f"  [{index}/{total}] OK: {item.path}")
    else:
        print(f"  [{index}/{total}] FAILED: {item.error_message}")


class DriveClient:
    """Client binding one drive session to the command line."""

    def __init__(self, settings: Settings, token: str) -> None:
        self.settings = settings
        self.http = create_http_client(settings)
        store = GitHubBlobStore(
            self.http,
            StaticCredential(token),
            settings.repo_owner,
            settings.repo_name,
            branch=settings.branch,
            api_version=settings.github_api_version,
            max_blob_bytes=settings.max_blob_bytes,
        )
        self.session = DriveSession(store=store, settings=settings)
        self.view = TreeView(self.session)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http.aclose()

    async def __aenter__(self) -> DriveClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _require_entry(self, path: str) -> Entry:
        entry = await find_entry(self.session, path)
        if entry is None:
            raise NotFoundError(normalize_path(path))
        return entry

    async def ls(
        self,
        path: str,
        view_filter: ViewFilter = ViewFilter.ALL,
        sort_key: SortKey = SortKey.NAME,
        search: str = "",
    ) -> tuple[Entry, ...]:
        self.view.view_filter = view_filter
        self.view.sort_key = sort_key
        self.view.search = search
        return await self.view.navigate(path)

    async def mkdir(self, path: str) -> Entry:
        return await create_directory(self.session, path)

    async def upload(self, local_path: Path, directory: str, overwrite: bool) -> MutationOutcome:
        # One byte past the ceiling is enough for the size check to reject it.
        with local_path.open("rb") as f:
            content = f.read(self.settings.max_blob_bytes + 1)
        return await upload_file(
            self.session, directory, local_path.name, content, overwrite=overwrite
        )

    async def upload_many(
        self, local_paths: list[Path], directory: str, overwrite: bool
    ) -> BatchResult:
        """Upload several local files one at a time, reporting each as it finishes."""
        limit = self.settings.max_blob_bytes
        files: list[tuple[str, bytes]] = []
        for local_path in local_paths:
            with local_path.open("rb") as f:
                files.append((local_path.name, f.read(limit + 1)))
        return await upload_entries(
            self.session, files, directory=directory, overwrite=overwrite, progress=_print_item
        )

    async def download(self, path: str, destination: Path) -> Path:
        content = await download_file(self.session, path)
        if destination.is_dir():
            destination = destination / Path(normalize_path(path)).name
        destination.write_bytes(content)
        return destination

    async def move(self, path: str, target: str) -> MutationOutcome:
        entry = await self._require_entry(path)
        if "/" in target.strip("/"):
            return await move_file(self.session, entry, target)
        return await rename_file(self.session, entry, target)

    async def remove(self, paths: list[str]) -> tuple[BatchResult, list[str]]:
        """Delete entries of one directory as a single batch selection."""
        normalized = [normalize_path(p) for p in paths]
        directories = {parent_path(p) for p in normalized}
        if len(directories) != 1:
            raise ValueError("All paths of one rm must be in the same directory")
        directory = directories.pop()
        check_selection_size(self.session, directory, len(normalized))
        await self.view.navigate(directory)
        missing: list[str] = []
        for path in normalized:
            entry = self.view.find(path)
            if entry is None:
                missing.append(path)
            else:
                self.view.select(entry)
        result = await delete_selection(self.view, progress=_print_item)
        return result, missing


def _build_settings(args: argparse.Namespace, config: dict[str, str]) -> Settings:
    overrides: dict[str, str] = {}
    owner = args.owner or config.get("owner")
    repo = args.repo or config.get("repo")
    branch = args.branch or config.get("branch")
    if owner:
        overrides["repo_owner"] = owner
    if repo:
        overrides["repo_name"] = repo
    if branch:
        overrides["branch"] = branch
    return Settings(**overrides)  # type: ignore[arg-type]


async def _run(args: argparse.Namespace, settings: Settings, token: str) -> int:
    async with DriveClient(settings, token) as client:
        if args.command == "ls":
            entries = await client.ls(
                args.path, ViewFilter(args.filter), SortKey(args.sort), args.search
            )
            crumbs = " / ".join(label for label, _ in client.view.breadcrumbs())
            print(crumbs)
            for entry in entries:
                print(format_entry(entry))
            print(f"{len(entries)} item(s)")
            return 0

        if args.command == "stats":
            await client.ls(args.path)
            stats = client.view.stats()
            usage = client.view.storage_usage()
            print(f"  Folders: {stats.folders}")
            print(f"  Files:   {stats.files}")
            print(f"  Images:  {stats.images}")
            print(f"  PDFs:    {stats.pdfs}")
            print(f"  Size:    {format_size(stats.total_size)}")
            print(
                f"  Storage: {format_size(usage.used_bytes)} of "
                f"{format_size(usage.quota_bytes)} ({usage.percent:.1f}%)"
            )
            return 0

        if args.command == "mkdir":
            entry = await client.mkdir(args.path)
            print(f"Created folder {entry.path}")
            return 0

        if args.command == "upload":
            if len(args.files) == 1:
                outcome = await client.upload(Path(args.files[0]), args.dir, args.overwrite)
                print(f"Uploaded {outcome.path}")
                return 0
            uploads = await client.upload_many(
                [Path(p) for p in args.files], args.dir, args.overwrite
            )
            print(f"Uploaded {uploads.succeeded} file(s), {uploads.failed} failure(s).")
            return 1 if uploads.failed else 0

        if args.command == "download":
            destination = await client.download(args.path, Path(args.output))
            print(f"Downloaded {args.path} -> {destination}")
            return 0

        if args.command == "mv":
            outcome = await client.move(args.path, args.target)
            if outcome.status is MutationStatus.PARTIAL:
                print(f"PARTIAL: {outcome.path} copied to {outcome.target} but not removed")
                _print_outcome(outcome)
                return 1
            print(f"Moved {outcome.path} -> {outcome.target}")
            return 0

        if args.command == "rm":
            result, missing = await client.remove(args.paths)
            for path in missing:
                print(f"  Not found: {path}")
            failed = result.failed + len(missing)
            print(f"Deleted {result.succeeded} item(s), {failed} failure(s).")
            return 1 if failed else 0

    return 2


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="gitdrive",
        description="Browse and change a drive stored in a GitHub repository",
    )
    parser.add_argument("--dir-config", default=".", help="Directory holding .gitdrive.json")
    parser.add_argument("--token", help="GitHub token (default: $GITHUB_TOKEN)")
    parser.add_argument("--owner", help="Repository owner")
    parser.add_argument("--repo", help="Repository name")
    parser.add_argument("--branch", help="Branch to operate on")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Save owner, repo, branch and token to .gitdrive.json")

    ls_parser = subparsers.add_parser("ls", help="List a folder")
    ls_parser.add_argument("path", nargs="?", default="")
    ls_parser.add_argument("--filter", choices=[f.value for f in ViewFilter], default="all")
    ls_parser.add_argument("--sort", choices=[s.value for s in SortKey], default="name")
    ls_parser.add_argument("--search", default="")

    stats_parser = subparsers.add_parser("stats", help="Show folder statistics")
    stats_parser.add_argument("path", nargs="?", default="")

    mkdir_parser = subparsers.add_parser("mkdir", help="Create a folder")
    mkdir_parser.add_argument("path")

    upload_parser = subparsers.add_parser("upload", help="Upload local files")
    upload_parser.add_argument("files", nargs="+")
    upload_parser.add_argument("--dir", default="", help="Target folder")
    upload_parser.add_argument("--overwrite", action="store_true")

    download_parser = subparsers.add_parser("download", help="Download a file")
    download_parser.add_argument("path")
    download_parser.add_argument("-o", "--output", default=".")

    mv_parser = subparsers.add_parser("mv", help="Rename or move a file")
    mv_parser.add_argument("path")
    mv_parser.add_argument("target", help="New name, or new path if it contains '/'")

    rm_parser = subparsers.add_parser("rm", help="Delete entries of one folder")
    rm_parser.add_argument("paths", nargs="+")

    args = parser.parse_args()
    config_dir = Path(args.dir_config).resolve()
    config = load_config(config_dir)

    if args.command == "init":
        if not (args.owner and args.repo):
            print("Error: --owner and --repo required for init")
            sys.exit(1)
        new_config = {"owner": args.owner, "repo": args.repo}
        if args.branch:
            new_config["branch"] = args.branch
        if args.token:
            new_config["token"] = args.token
        save_config(config_dir, new_config)
        print(f"Initialized drive config in {config_dir / CONFIG_FILE}")
        return

    if args.command is None:
        parser.print_help()
        return

    settings = _build_settings(args, config)
    if not settings.repo_owner:
        print("Error: No repository configured. Run 'gitdrive init --owner <o> --repo <r>' first.")
        sys.exit(1)

    token = (
        args.token
        or os.environ.get("GITHUB_TOKEN")
        or config.get("token")
        or settings.github_token
    )
    if not token:
        print("Error: No token. Pass --token or set GITHUB_TOKEN.")
        sys.exit(1)

    try:
        exit_code = asyncio.run(_run(args, settings, token))
    except DriveError as exc:
        print(f"Error ({exc.kind}): {exc}")
        sys.exit(1)
    except (ValueError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
