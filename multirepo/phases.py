#!/usr/bin/env python3
"""
Orchestrator-side phase wrapper.

Runs one setup phase for one repository through the cache: ask whether it
can be skipped, run it if not, and record the outcome.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable

from multirepo.fingerprint.config import Phase
from multirepo.fingerprint.manager import CacheManager
from multirepo.repos import RepositoryConfig


logger = logging.getLogger(__name__)


class PhaseOutcome(Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    WOULD_RUN = "would_run"  # dry-run: the phase would have run


def run_phase(
    cache: CacheManager,
    repo: RepositoryConfig,
    repo_path: Path,
    phase: Phase,
    action: Callable[[], bool],
) -> PhaseOutcome:
    """
    Run a phase unless the cache says it can be skipped.

    In dry-run mode the decision is still made and reported, but the action
    is not called and nothing is recorded.

    Args:
        cache: Initialized cache manager
        repo: Repository configuration
        repo_path: Repository checkout directory
        phase: Phase to run
        action: Runs the phase; returns True on success

    Returns:
        PhaseOutcome

    Raises:
        Exception: Whatever action raised, after the failure is recorded
    """
    if cache.evaluate(repo, repo_path, phase).can_skip:
        return PhaseOutcome.SKIPPED

    if cache.options.dry_run:
        logger.info(f"Would run {phase.value} for {repo.name} (dry-run mode)")
        return PhaseOutcome.WOULD_RUN

    try:
        succeeded = action()
    except Exception:
        cache.update_after_failure(repo, repo_path, phase)
        raise

    if succeeded:
        cache.update_after_success(repo, repo_path, phase)
        return PhaseOutcome.SUCCEEDED

    cache.update_after_failure(repo, repo_path, phase)
    return PhaseOutcome.FAILED
