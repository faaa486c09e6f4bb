#!/usr/bin/env python3
"""
Setup Cache Manager

Decides, per repository and phase, whether prior setup work can be reused,
and records the evidence after a phase runs.

PreClone is skipped only when the repository list, the repository's trait
scripts and its custom preClone script are unchanged since the last
successful run. PostClone additionally requires the repository content and
its dependency manifests to be unchanged.

All checks are conservative: missing or unreadable evidence counts as a
change, and a failed run is always repeated.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from multirepo.fingerprint.checksum import ChecksumEngine
from multirepo.fingerprint.config import (
    DEPENDENCY_FILES,
    Phase,
    PhaseStatus,
    SetupPaths,
)
from multirepo.fingerprint.lockfile import (
    LockStats,
    LockStore,
    RepositoryRecord,
)
from multirepo.fingerprint.rules import (
    CacheDecision,
    CacheInvalidationRules,
    InvalidationTrigger,
)
from multirepo.options import CacheOptions
from multirepo.repos import RepositoryConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """Skip and force counts over a set of repositories."""

    total: int
    pre_clone_skipped: int
    post_clone_skipped: int
    pre_clone_forced: int
    post_clone_forced: int

    @property
    def operations_saved(self) -> int:
        return self.pre_clone_skipped + self.post_clone_skipped

    @property
    def cache_hit_rate(self) -> int:
        """Percentage of the possible phase runs that can be skipped."""
        possible = self.total * 2
        if possible == 0:
            return 0
        return round(self.operations_saved * 100 / possible)


class CacheManager:
    """
    Cache decisions and updates for the setup orchestrator.

    Usage:
        cache = CacheManager(LockStore(paths.lock_file, paths), options).initialize()
        if not cache.can_skip_post_clone(repo, repo_path):
            ...  # run the phase
            cache.update_after_success(repo, repo_path, Phase.POST_CLONE)
        cache.save()
    """

    def __init__(self, store: LockStore, options: Optional[CacheOptions] = None):
        """
        Initialize the cache manager.

        Args:
            store: Lock document store
            options: Cache flags (defaults to smart caching)
        """
        self.store = store
        self.options = options if options is not None else CacheOptions()
        self.initialized = False

    @property
    def paths(self) -> SetupPaths:
        return self.store.paths

    @property
    def checksums(self) -> ChecksumEngine:
        return self.store.checksums

    # ==========================================================================
    # Initialization and persistence
    # ==========================================================================

    def initialize(self) -> "CacheManager":
        """
        Clear the lock file if requested, then load it. Safe to call twice.

        Returns:
            self
        """
        if self.initialized:
            return self

        if self.options.clear_lock:
            self.handle_lock_file_clear()

        self.store.load()
        self.initialized = True
        logger.info(f"Cache configuration: {self.options.describe()}")
        return self

    def handle_lock_file_clear(self) -> None:
        if self.options.dry_run:
            logger.info("Would clear lock file (dry-run mode)")
            return
        self.store.delete_lock_file()

    def save(self) -> None:
        """
        Persist the lock document unless caching is disabled or in dry-run.

        Raises:
            LockFileSaveError: If the document could not be written
        """
        if self.options.skip_cache:
            logger.info("Skipping lock file save (--skip-cache enabled)")
            return
        if self.options.dry_run:
            logger.info("Would save lock file (dry-run mode)")
            return
        self.store.save()
        logger.info("Cache state saved to lock file")

    # ==========================================================================
    # Decisions
    # ==========================================================================

    def should_force_execution(self, phase: Phase) -> bool:
        return self.options.forces(phase)

    def evaluate(
        self, repo: RepositoryConfig, repo_path: Path, phase: Phase
    ) -> CacheDecision:
        """
        Decide whether a phase must run, checking in priority order.

        1. Force overrides
        2. Previous success of this phase
        3. Repository list
        4. Trait scripts and settings for this phase
        5. Custom script for this phase
        6. PostClone only: repository content, then dependency manifests

        Args:
            repo: Repository configuration
            repo_path: Repository checkout directory
            phase: Phase to decide

        Returns:
            CacheDecision; the first failing check determines the trigger
        """
        decision = self._evaluate(repo, Path(repo_path), phase)
        if decision.can_skip:
            record = self.store.get_repository_data(repo.name)
            last_run = record.timestamp(phase) if record is not None else None
            logger.info(
                f"{phase.value} can be skipped for {repo.name} "
                f"({decision.reason}, last run {last_run or 'unknown'})"
            )
        elif decision.trigger is InvalidationTrigger.MANUAL:
            logger.info(f"Forcing {phase.value} execution for {repo.name} (cache override)")
        else:
            logger.info(f"{phase.value} needed for {repo.name} ({decision.reason})")
        return decision

    def _evaluate(
        self, repo: RepositoryConfig, repo_path: Path, phase: Phase
    ) -> CacheDecision:
        run = CacheInvalidationRules.run

        if self.should_force_execution(phase):
            return run(InvalidationTrigger.MANUAL)

        record = self.store.get_repository_data(repo.name)
        if record is None or record.status(phase) is not PhaseStatus.SUCCESS:
            return run(InvalidationTrigger.NO_PREVIOUS_SUCCESS)

        if self.store.has_config_file_changed():
            return run(InvalidationTrigger.CONFIG_CHANGED)

        if self.store.have_trait_scripts_changed(repo.traits, phase):
            return run(InvalidationTrigger.TRAIT_SCRIPT_CHANGED)

        if self.has_custom_script_changed(repo, phase, record):
            return run(InvalidationTrigger.CUSTOM_SCRIPT_CHANGED)

        verified = ["configuration", "trait scripts", "custom script"]

        if phase is Phase.POST_CLONE:
            if self.store.has_repository_changed(repo.name, repo_path):
                return run(InvalidationTrigger.CONTENT_CHANGED)

            if self.have_dependency_files_changed(repo, repo_path, record):
                return run(InvalidationTrigger.DEPENDENCY_CHANGED)

            verified += ["repository content", "dependency files"]

        return CacheInvalidationRules.skip(tuple(verified))

    def can_skip_pre_clone(self, repo: RepositoryConfig, repo_path: Path) -> bool:
        return self.evaluate(repo, repo_path, Phase.PRE_CLONE).can_skip

    def can_skip_post_clone(self, repo: RepositoryConfig, repo_path: Path) -> bool:
        return self.evaluate(repo, repo_path, Phase.POST_CLONE).can_skip

    def has_custom_script_changed(
        self, repo: RepositoryConfig, phase: Phase, record: RepositoryRecord
    ) -> bool:
        """
        Compare the repository's custom script for a phase with its stored hash.

        Inline command hooks are never tracked.
        """
        script = repo.script_hook(phase)
        if script is None:
            return False

        script_path = self.paths.custom_script(repo.name, script.filename)
        changed = self.store.has_file_changed(
            script_path, record.custom_scripts.get(phase.value)
        )
        if changed:
            logger.info(
                f"Custom {phase.value} script changed for {repo.name}: {script_path}"
            )
        return changed

    def have_dependency_files_changed(
        self, repo: RepositoryConfig, repo_path: Path, record: RepositoryRecord
    ) -> bool:
        """Compare each known dependency manifest with its stored hash."""
        repo_path = Path(repo_path)
        if not repo_path.is_dir():
            return False

        for filename in DEPENDENCY_FILES:
            if self.store.has_file_changed(
                repo_path / filename, record.dependency_files.get(filename)
            ):
                logger.info(f"Dependency file changed: {filename} in {repo.name}")
                return True
        return False

    # ==========================================================================
    # Updates
    # ==========================================================================

    def calculate_dependency_file_checksums(self, repo_path: Path) -> dict[str, str]:
        """
        Hash every known dependency manifest present in a repository.

        Returns:
            Filename to hash; missing or unreadable files are left out
        """
        checksums: dict[str, str] = {}
        repo_path = Path(repo_path)
        if not repo_path.is_dir():
            return checksums

        for filename in DEPENDENCY_FILES:
            digest = self.checksums.file_checksum(repo_path / filename)
            if digest is not None:
                checksums[filename] = digest
        return checksums

    def _custom_script_checksums(
        self, repo: RepositoryConfig, phase: Phase, record: RepositoryRecord
    ) -> dict[str, str]:
        # Full map, so the other phase's hash survives the shallow merge
        custom_scripts = dict(record.custom_scripts)
        script = repo.script_hook(phase)
        digest = (
            self.checksums.file_checksum(
                self.paths.custom_script(repo.name, script.filename)
            )
            if script is not None
            else None
        )
        if digest is None:
            custom_scripts.pop(phase.value, None)
        else:
            custom_scripts[phase.value] = digest
        return custom_scripts

    def update_after_success(
        self,
        repo: RepositoryConfig,
        repo_path: Path,
        phase: Phase,
        success: bool = True,
    ) -> None:
        """
        Record the outcome of a phase with freshly captured checksums.

        Args:
            repo: Repository configuration
            repo_path: Repository checkout directory
            phase: Phase that ran
            success: Whether the phase completed without error
        """
        if self.options.skip_cache:
            return

        existing = self.store.get_repository_data(repo.name) or RepositoryRecord.empty()
        update = {
            "traits": tuple(repo.traits),
            phase.status_field: PhaseStatus.SUCCESS if success else PhaseStatus.FAILED,
            phase.timestamp_field: datetime.now().isoformat(),
            "custom_scripts": self._custom_script_checksums(repo, phase, existing),
        }

        if phase is Phase.POST_CLONE:
            update["content_checksum"] = self.checksums.directory_checksum(repo_path)
            update["dependency_files"] = self.calculate_dependency_file_checksums(
                repo_path
            )

        self.store.update_repository_data(repo.name, update)
        self.update_global_checksums(repo)
        logger.info(f"Cache updated for {repo.name} {phase.value} phase")

    def update_after_failure(
        self, repo: RepositoryConfig, repo_path: Path, phase: Phase
    ) -> None:
        """Record a failed phase so the next run repeats it."""
        self.update_after_success(repo, repo_path, phase, success=False)
        logger.warning(f"Cache marked failure for {repo.name} {phase.value} phase")

    def update_global_checksums(self, repo: RepositoryConfig) -> None:
        """Refresh the repository list hash and this repository's trait hashes."""
        # These hashes are shared by all repositories: the first update after
        # a change records the new hashes, so repositories evaluated later in
        # the same run no longer see that change.
        self.store.update_global_checksums(
            {"config_file_hash": self.checksums.file_checksum(self.paths.config_file)}
        )
        self.store.update_trait_script_checksums(repo.traits)

    # ==========================================================================
    # Reporting
    # ==========================================================================

    def get_cache_stats(
        self,
        repos: Sequence[RepositoryConfig],
        repo_path_for: Optional[Callable[[RepositoryConfig], Path]] = None,
    ) -> CacheStats:
        """
        Count the phases that can be skipped or are forced. Read-only.

        Args:
            repos: Repositories to evaluate
            repo_path_for: Checkout directory lookup (defaults to packages/<name>)

        Returns:
            CacheStats for the set
        """
        if repo_path_for is None:
            repo_path_for = lambda repo: self.paths.repository_dir(repo.name)  # noqa: E731

        pre_skipped = post_skipped = pre_forced = post_forced = 0
        for repo in repos:
            repo_path = repo_path_for(repo)

            if self.can_skip_pre_clone(repo, repo_path):
                pre_skipped += 1
            if self.should_force_execution(Phase.PRE_CLONE):
                pre_forced += 1

            # PostClone only applies to repositories already on disk
            if repo_path.is_dir():
                if self.can_skip_post_clone(repo, repo_path):
                    post_skipped += 1
                if self.should_force_execution(Phase.POST_CLONE):
                    post_forced += 1

        return CacheStats(
            total=len(repos),
            pre_clone_skipped=pre_skipped,
            post_clone_skipped=post_skipped,
            pre_clone_forced=pre_forced,
            post_clone_forced=post_forced,
        )

    def get_lock_stats(self) -> LockStats:
        return self.store.get_stats()

    def display_cache_info(
        self,
        repos: Sequence[RepositoryConfig],
        repo_path_for: Optional[Callable[[RepositoryConfig], Path]] = None,
    ) -> None:
        """Log lock file status and cache effectiveness. Read-only."""
        if self.options.skip_cache:
            logger.warning("Cache system disabled (--skip-cache)")
            return

        stats = self.get_cache_stats(repos, repo_path_for)
        lock_stats = self.store.get_stats()

        logger.info("Cache System Status:")
        logger.info(f"  Lock file location: {self.store.lock_file_path}")
        logger.info(f"  Repositories tracked: {lock_stats.repository_count}")
        logger.info(f"  Trait scripts monitored: {lock_stats.tracked_script_count}")
        logger.info(f"  Last cache update: {lock_stats.last_generated or 'Never'}")

        if stats.operations_saved > 0:
            logger.info("Cache Optimization Active:")
            logger.info(f"  Operations that can be skipped: {stats.operations_saved}")
            logger.info(f"  Cache hit rate: {stats.cache_hit_rate}%")
            if stats.pre_clone_skipped > 0:
                logger.info(
                    f"  PreClone operations skipped: {stats.pre_clone_skipped}/{stats.total}"
                )
            if stats.post_clone_skipped > 0:
                logger.info(
                    f"  PostClone operations skipped: {stats.post_clone_skipped}/{stats.total}"
                )

        if stats.pre_clone_forced > 0 or stats.post_clone_forced > 0:
            logger.warning("Cache Override Active:")
            if stats.pre_clone_forced > 0:
                logger.warning(
                    f"  PreClone operations forced: {stats.pre_clone_forced}/{stats.total}"
                )
            if stats.post_clone_forced > 0:
                logger.warning(
                    f"  PostClone operations forced: {stats.post_clone_forced}/{stats.total}"
                )

    def validate_cache_integrity(self) -> bool:
        report = self.store.validate_integrity()
        if report.valid:
            logger.info("Cache integrity validation passed")
        else:
            logger.warning(
                f"Cache integrity validation failed - cache may be corrupted: "
                f"{', '.join(report.errors)}"
            )
        return report.valid
