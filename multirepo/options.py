#!/usr/bin/env python3
"""Cache behavior flags shared by the orchestrator and the cache manager."""

import argparse
from dataclasses import dataclass

from typeguard import typechecked

from multirepo.fingerprint.config import Phase


@typechecked
@dataclass(frozen=True)
class CacheOptions:
    """Type-safe cache options"""

    skip_cache: bool = False
    force_all: bool = False
    force_pre_clone: bool = False
    force_post_clone: bool = False
    clear_lock: bool = False
    dry_run: bool = False

    def forces(self, phase: Phase) -> bool:
        """
        Whether any override forces a phase to run.

        Precedence is skip-cache, then force-all, then the phase flag; the
        flags are independent and any one of them forces execution.
        """
        if self.skip_cache:
            return True
        if self.force_all:
            return True
        if phase is Phase.PRE_CLONE:
            return self.force_pre_clone
        return self.force_post_clone

    def is_force_mode(self) -> bool:
        return (
            self.skip_cache
            or self.force_all
            or self.force_pre_clone
            or self.force_post_clone
        )

    def validate(self) -> list[str]:
        """
        Find conflicting flag combinations.

        Returns:
            List of error messages (empty when valid)
        """
        errors: list[str] = []
        if self.force_all and (self.force_pre_clone or self.force_post_clone):
            errors.append(
                "--force-all cannot be used with --force-preclone or --force-postclone"
            )
        if self.dry_run and self.clear_lock:
            errors.append("Cannot clear lock file in dry-run mode")
        return errors

    def describe(self) -> str:
        """Human-readable summary of the active options."""
        active: list[str] = []
        if self.force_all:
            active.append("force-all")
        else:
            if self.force_pre_clone:
                active.append("force-preclone")
            if self.force_post_clone:
                active.append("force-postclone")
        if self.skip_cache:
            active.append("skip-cache")
        if self.clear_lock:
            active.append("clear-lock")
        if self.dry_run:
            active.append("dry-run")
        return ", ".join(active) if active else "smart caching enabled"


def add_cache_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the cache flags on a parser."""
    group = parser.add_argument_group("cache")
    group.add_argument(
        "--skip-cache", action="store_true", help="Disable caching entirely"
    )
    group.add_argument(
        "--force-all", action="store_true", help="Run every phase regardless of cache"
    )
    group.add_argument(
        "--force-preclone",
        dest="force_pre_clone",
        action="store_true",
        help="Run preClone regardless of cache",
    )
    group.add_argument(
        "--force-postclone",
        dest="force_post_clone",
        action="store_true",
        help="Run postClone regardless of cache",
    )
    group.add_argument(
        "--clear-lock", action="store_true", help="Delete the lock file before loading"
    )
    group.add_argument(
        "--dry-run",
        action="store_true",
        help="Report decisions without running phases or writing the lock file",
    )


def options_from_args(args: argparse.Namespace) -> CacheOptions:
    """Build CacheOptions from parsed arguments."""
    return CacheOptions(
        skip_cache=bool(getattr(args, "skip_cache", False)),
        force_all=bool(getattr(args, "force_all", False)),
        force_pre_clone=bool(getattr(args, "force_pre_clone", False)),
        force_post_clone=bool(getattr(args, "force_post_clone", False)),
        clear_lock=bool(getattr(args, "clear_lock", False)),
        dry_run=bool(getattr(args, "dry_run", False)),
    )
