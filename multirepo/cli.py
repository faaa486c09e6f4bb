#!/usr/bin/env python3
"""
multirepo-cache: inspect and maintain the setup lock file.

Commands:
    status   Lock file statistics and per-repository skip verdicts
    verify   Integrity check of the lock file (exit 1 when invalid)
    clear    Delete the lock file
    forget   Drop the cached state of named repositories
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from multirepo.fingerprint.config import Phase, SetupPaths
from multirepo.fingerprint.lockfile import LockFileSaveError, LockStore
from multirepo.fingerprint.manager import CacheManager
from multirepo.options import add_cache_arguments, options_from_args
from multirepo.repos import RepositoryConfigError, load_repositories


logger = logging.getLogger(__name__)


def parse_args(args: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="multirepo-cache", description="Inspect the multirepo setup cache"
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Project root holding repos.yaml (default: current directory)",
    )
    parser.add_argument(
        "--lock-file",
        type=Path,
        default=None,
        help="Lock file path (default: <root>/multirepo.lock)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    add_cache_arguments(parser)

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show cache statistics and verdicts")
    subparsers.add_parser("verify", help="Validate lock file integrity")
    subparsers.add_parser("clear", help="Delete the lock file")
    forget = subparsers.add_parser("forget", help="Drop cached repository state")
    forget.add_argument("names", nargs="+", help="Repository names")

    return parser.parse_args(args)


def _verdict(skippable: bool) -> str:
    return "[green]skip[/green]" if skippable else "[yellow]run[/yellow]"


def cmd_status(cache: CacheManager, console: Console) -> int:
    try:
        repos = load_repositories(cache.paths.config_file, cache.paths.script_suffix)
    except RepositoryConfigError as e:
        logger.warning(f"Cannot read repository list: {e}")
        repos = []

    lock_stats = cache.get_lock_stats()
    console.print(f"Lock file: {cache.store.lock_file_path}")
    console.print(
        f"Format {lock_stats.format_version}, {lock_stats.file_size_bytes} bytes"
    )
    console.print(
        f"Tracking {lock_stats.repository_count} repositories, "
        f"{lock_stats.tracked_script_count} trait files"
    )
    console.print(f"Last update: {lock_stats.last_generated or 'never'}")
    console.print(f"Options: {cache.options.describe()}")

    table = Table(title="Cache verdicts")
    table.add_column("Repository")
    table.add_column("preClone")
    table.add_column("postClone")
    table.add_column("Reason")
    for repo in repos:
        repo_path = cache.paths.repository_dir(repo.name)
        pre = cache.evaluate(repo, repo_path, Phase.PRE_CLONE)
        if repo_path.is_dir():
            post = cache.evaluate(repo, repo_path, Phase.POST_CLONE)
            post_cell = _verdict(post.can_skip)
            reason = post.reason if pre.can_skip else pre.reason
        else:
            post_cell = "[dim]not cloned[/dim]"
            reason = pre.reason
        table.add_row(repo.name, _verdict(pre.can_skip), post_cell, reason)
    console.print(table)

    stats = cache.get_cache_stats(repos)
    console.print(
        f"Skippable operations: {stats.operations_saved} "
        f"(cache hit rate {stats.cache_hit_rate}%)"
    )
    return 0


def cmd_verify(cache: CacheManager, console: Console) -> int:
    report = cache.store.validate_integrity()
    if report.valid:
        console.print("[green]Lock file is valid[/green]")
        return 0
    for error in report.errors:
        console.print(f"[red]{error}[/red]")
    return 1


def cmd_clear(cache: CacheManager, console: Console) -> int:
    if cache.options.dry_run:
        console.print(f"Would delete {cache.store.lock_file_path}")
        return 0
    removed = cache.store.delete_lock_file()
    console.print("Lock file deleted" if removed else "No lock file to delete")
    return 0


def cmd_forget(cache: CacheManager, console: Console, names: list[str]) -> int:
    if cache.options.skip_cache:
        console.print("[red]Cannot forget repositories with --skip-cache[/red]")
        return 2
    if cache.options.dry_run:
        for name in names:
            console.print(f"Would forget {name}")
        return 0

    for name in names:
        if cache.store.clear_repository_data(name):
            console.print(f"Forgot {name}")
        else:
            console.print(f"[yellow]{name} is not tracked[/yellow]")
    cache.save()
    return 0


def main(args: Optional[list[str]] = None) -> int:
    parsed = parse_args(args)
    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    console = Console()

    options = options_from_args(parsed)
    errors = options.validate()
    if errors:
        for error in errors:
            console.print(f"[red]{error}[/red]")
        return 2

    paths = SetupPaths.from_root(parsed.root, lock_file=parsed.lock_file)
    cache = CacheManager(LockStore(paths.lock_file, paths), options)

    try:
        if parsed.command == "clear":
            return cmd_clear(cache, console)

        cache.initialize()
        if parsed.command == "status":
            return cmd_status(cache, console)
        if parsed.command == "verify":
            return cmd_verify(cache, console)
        return cmd_forget(cache, console, parsed.names)
    except LockFileSaveError as e:
        console.print(f"[red]{e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
