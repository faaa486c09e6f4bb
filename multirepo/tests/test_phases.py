"""Tests for the orchestrator phase wrapper."""

from typing import Optional

import pytest

from multirepo.fingerprint.config import Phase, PhaseStatus
from multirepo.phases import PhaseOutcome, run_phase


class Recorder:
    """Phase action that counts calls and returns a fixed result."""

    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.calls = 0
        self.result = result
        self.error = error

    def __call__(self) -> bool:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def test_runs_then_skips(project) -> None:
    cache = project.manager()
    alpha = project.repos["alpha"]
    path = project.repo_dir("alpha")
    action = Recorder()

    assert run_phase(cache, alpha, path, Phase.PRE_CLONE, action) is PhaseOutcome.SUCCEEDED
    assert run_phase(cache, alpha, path, Phase.PRE_CLONE, action) is PhaseOutcome.SKIPPED
    assert action.calls == 1


def test_failed_action_is_recorded_and_repeated(project) -> None:
    cache = project.manager()
    beta = project.repos["beta"]
    path = project.repo_dir("beta")
    action = Recorder(result=False)

    assert run_phase(cache, beta, path, Phase.POST_CLONE, action) is PhaseOutcome.FAILED
    record = cache.store.get_repository_data("beta")
    assert record.post_clone_status is PhaseStatus.FAILED

    assert run_phase(cache, beta, path, Phase.POST_CLONE, action) is PhaseOutcome.FAILED
    assert action.calls == 2


def test_raising_action_records_failure(project) -> None:
    cache = project.manager()
    alpha = project.repos["alpha"]
    path = project.repo_dir("alpha")

    with pytest.raises(RuntimeError, match="boom"):
        run_phase(cache, alpha, path, Phase.POST_CLONE, Recorder(error=RuntimeError("boom")))

    record = cache.store.get_repository_data("alpha")
    assert record.post_clone_status is PhaseStatus.FAILED


def test_dry_run_reports_without_running(project) -> None:
    cache = project.manager(dry_run=True)
    alpha = project.repos["alpha"]
    path = project.repo_dir("alpha")
    action = Recorder()

    assert run_phase(cache, alpha, path, Phase.PRE_CLONE, action) is PhaseOutcome.WOULD_RUN
    assert action.calls == 0
    assert cache.store.get_repository_data("alpha") is None


def test_forced_phase_runs_despite_cache(project) -> None:
    alpha = project.repos["alpha"]
    path = project.repo_dir("alpha")
    cache = project.manager()
    run_phase(cache, alpha, path, Phase.POST_CLONE, Recorder())
    cache.save()

    forced = project.manager(force_post_clone=True)
    action = Recorder()
    assert run_phase(forced, alpha, path, Phase.POST_CLONE, action) is PhaseOutcome.SUCCEEDED
    assert action.calls == 1
