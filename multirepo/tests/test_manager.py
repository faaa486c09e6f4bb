"""
Tests for the cache manager decision procedures.

Each test drives a two-repository project through phases and checks the
verdict and trigger the manager reports.
"""

import logging

from multirepo.fingerprint.config import Phase, PhaseStatus
from multirepo.fingerprint.lockfile import LoadOutcome
from multirepo.fingerprint.rules import CacheAction, InvalidationTrigger


def run_both_phases(cache, repo, repo_path) -> None:
    cache.update_after_success(repo, repo_path, Phase.PRE_CLONE)
    cache.update_after_success(repo, repo_path, Phase.POST_CLONE)


class TestPreClone:
    def test_alpha_skips_after_success(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")

        decision = cache.evaluate(alpha, path, Phase.PRE_CLONE)
        assert decision.can_skip is False
        assert decision.reason == "no previous success"
        assert decision.trigger is InvalidationTrigger.NO_PREVIOUS_SUCCESS

        cache.update_after_success(alpha, path, Phase.PRE_CLONE, True)
        record = cache.store.get_repository_data("alpha")
        assert record.pre_clone_status is PhaseStatus.SUCCESS
        assert record.pre_clone_timestamp
        assert record.traits == ("nodejs", "npm")

        assert cache.can_skip_pre_clone(alpha, path) is True

    def test_skip_lists_verified_dimensions(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        cache.update_after_success(alpha, path, Phase.PRE_CLONE)

        decision = cache.evaluate(alpha, path, Phase.PRE_CLONE)
        assert decision.action is CacheAction.SKIP
        assert decision.trigger is None
        assert decision.verified == ("configuration", "trait scripts", "custom script")

    def test_skip_log_reports_last_run(self, project, caplog) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        cache.update_after_success(alpha, path, Phase.PRE_CLONE)
        last_run = cache.store.get_repository_data("alpha").timestamp(Phase.PRE_CLONE)
        assert last_run

        caplog.set_level(logging.INFO, logger="multirepo.fingerprint.manager")
        assert cache.can_skip_pre_clone(alpha, path) is True
        assert f"last run {last_run}" in caplog.text

    def test_pre_clone_does_not_need_clone(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        missing = project.paths.packages_dir / "not-cloned"

        cache.update_after_success(alpha, missing, Phase.PRE_CLONE)
        assert cache.can_skip_pre_clone(alpha, missing) is True

    def test_success_of_one_phase_does_not_cover_the_other(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        cache.update_after_success(alpha, path, Phase.PRE_CLONE)

        decision = cache.evaluate(alpha, path, Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.NO_PREVIOUS_SUCCESS


class TestPostClone:
    def test_converges_after_success(self, project) -> None:
        cache = project.manager()
        for name in ("alpha", "beta"):
            repo = project.repos[name]
            path = project.repo_dir(name)
            run_both_phases(cache, repo, path)

            assert cache.can_skip_pre_clone(repo, path) is True
            decision = cache.evaluate(repo, path, Phase.POST_CLONE)
            assert decision.can_skip is True
            assert decision.verified[-2:] == ("repository content", "dependency files")

    def test_records_content_and_dependencies(self, project) -> None:
        cache = project.manager()
        beta = project.repos["beta"]
        path = project.repo_dir("beta")
        cache.update_after_success(beta, path, Phase.POST_CLONE)

        record = cache.store.get_repository_data("beta")
        assert record.content_checksum == cache.checksums.directory_checksum(path)
        assert list(record.dependency_files) == ["package.json"]
        assert record.custom_scripts == {
            "postClone": cache.checksums.file_checksum(
                project.paths.custom_root / "beta" / "setup.py"
            )
        }

    def test_beta_dependency_change(self, project) -> None:
        cache = project.manager()
        beta = project.repos["beta"]
        path = project.repo_dir("beta")
        cache.update_after_success(beta, path, Phase.POST_CLONE)
        old_hash = cache.store.get_repository_data("beta").dependency_files["package.json"]

        project.write("packages/beta/package.json", '{"name": "beta", "version": "2.0.0"}\n')
        new_hash = cache.checksums.file_checksum(path / "package.json")
        assert new_hash != old_hash

        # Content fingerprint refreshed, so only the manifest hash is stale
        cache.store.update_repository_data(
            "beta", {"content_checksum": cache.checksums.directory_checksum(path)}
        )

        decision = cache.evaluate(beta, path, Phase.POST_CLONE)
        assert decision.can_skip is False
        assert decision.reason == "dependency files changed"
        assert decision.trigger is InvalidationTrigger.DEPENDENCY_CHANGED

    def test_content_change_is_checked_before_dependencies(self, project) -> None:
        cache = project.manager()
        beta = project.repos["beta"]
        path = project.repo_dir("beta")
        cache.update_after_success(beta, path, Phase.POST_CLONE)

        project.write("packages/beta/package.json", "{}\n")
        decision = cache.evaluate(beta, path, Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.CONTENT_CHANGED

    def test_new_dependency_manifest_is_a_change(self, project) -> None:
        cache = project.manager()
        beta = project.repos["beta"]
        path = project.repo_dir("beta")
        cache.update_after_success(beta, path, Phase.POST_CLONE)

        project.write("packages/beta/yarn.lock", "# yarn\n")
        cache.store.update_repository_data(
            "beta", {"content_checksum": cache.checksums.directory_checksum(path)}
        )
        decision = cache.evaluate(beta, path, Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.DEPENDENCY_CHANGED

    def test_excluded_changes_keep_the_cache(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        cache.update_after_success(alpha, path, Phase.POST_CLONE)

        project.write("packages/alpha/node_modules/dep/index.js", "module.exports = 2;\n")
        project.write("packages/alpha/npm-debug.log", "noise\n")
        assert cache.can_skip_post_clone(alpha, path) is True

    def test_missing_checkout_must_run(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        cache.update_after_success(alpha, path, Phase.POST_CLONE)

        decision = cache.evaluate(alpha, project.repo_dir("elsewhere"), Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.CONTENT_CHANGED


class TestDrift:
    def prepared(self, project):
        cache = project.manager()
        repos = project.repos
        for name, repo in repos.items():
            run_both_phases(cache, repo, project.repo_dir(name))
        return cache, repos

    def test_config_change_invalidates_every_repository(self, project) -> None:
        cache, repos = self.prepared(project)
        project.write("repos.yaml", project.paths.config_file.read_text() + "gamma: {}\n")

        for name, repo in repos.items():
            for phase in Phase:
                decision = cache.evaluate(repo, project.repo_dir(name), phase)
                assert decision.trigger is InvalidationTrigger.CONFIG_CHANGED

    def test_config_change_is_absorbed_by_first_update(self, project) -> None:
        """Global hashes are shared, so one update clears the drift for all."""
        cache, repos = self.prepared(project)
        project.write("repos.yaml", project.paths.config_file.read_text() + "gamma: {}\n")
        alpha_path = project.repo_dir("alpha")
        beta_path = project.repo_dir("beta")

        decision = cache.evaluate(repos["beta"], beta_path, Phase.PRE_CLONE)
        assert decision.trigger is InvalidationTrigger.CONFIG_CHANGED

        cache.update_after_success(repos["alpha"], alpha_path, Phase.PRE_CLONE)

        assert cache.can_skip_pre_clone(repos["beta"], beta_path) is True
        assert cache.can_skip_post_clone(repos["beta"], beta_path) is True

    def test_trait_script_change_only_affects_users_of_the_trait(self, project) -> None:
        cache, repos = self.prepared(project)
        project.write("scripts/traits/nodejs/preClone.py", "# changed\n")

        alpha = cache.evaluate(repos["alpha"], project.repo_dir("alpha"), Phase.PRE_CLONE)
        assert alpha.trigger is InvalidationTrigger.TRAIT_SCRIPT_CHANGED
        assert cache.can_skip_pre_clone(repos["beta"], project.repo_dir("beta")) is True
        # preClone scripts are not inputs of postClone
        assert cache.can_skip_post_clone(repos["alpha"], project.repo_dir("alpha")) is True

    def test_trait_settings_change_affects_both_phases(self, project) -> None:
        cache, repos = self.prepared(project)
        project.write("scripts/traits/npm/config.yaml", "name: npm\nregistry: local\n")

        for name, repo in repos.items():
            for phase in Phase:
                decision = cache.evaluate(repo, project.repo_dir(name), phase)
                assert decision.trigger is InvalidationTrigger.TRAIT_SCRIPT_CHANGED

    def test_custom_script_change(self, project) -> None:
        cache, repos = self.prepared(project)
        project.write("scripts/custom/alpha/prepare.py", "print('changed')\n")

        decision = cache.evaluate(repos["alpha"], project.repo_dir("alpha"), Phase.PRE_CLONE)
        assert decision.trigger is InvalidationTrigger.CUSTOM_SCRIPT_CHANGED
        assert decision.reason == "custom script changed"
        assert cache.can_skip_post_clone(repos["alpha"], project.repo_dir("alpha")) is True

    def test_deleted_custom_script_is_a_change(self, project) -> None:
        cache, repos = self.prepared(project)
        (project.paths.custom_root / "beta" / "setup.py").unlink()

        decision = cache.evaluate(repos["beta"], project.repo_dir("beta"), Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.CUSTOM_SCRIPT_CHANGED

    def test_inline_command_is_not_tracked(self, project) -> None:
        cache, repos = self.prepared(project)
        record = cache.store.get_repository_data("alpha")

        assert "postClone" not in record.custom_scripts
        assert cache.can_skip_post_clone(repos["alpha"], project.repo_dir("alpha")) is True

    def test_other_phase_custom_hash_survives(self, project) -> None:
        cache, repos = self.prepared(project)
        record = cache.store.get_repository_data("alpha")

        assert "preClone" in record.custom_scripts
        assert cache.can_skip_pre_clone(repos["alpha"], project.repo_dir("alpha")) is True

    def test_content_change(self, project) -> None:
        cache, repos = self.prepared(project)
        project.write("packages/alpha/lib/new.js", "export default 1;\n")

        decision = cache.evaluate(repos["alpha"], project.repo_dir("alpha"), Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.CONTENT_CHANGED
        assert decision.reason == "repository content changed"
        assert cache.can_skip_pre_clone(repos["alpha"], project.repo_dir("alpha")) is True


class TestOverrides:
    def prepared(self, project, **options):
        cache = project.manager()
        for name, repo in project.repos.items():
            run_both_phases(cache, repo, project.repo_dir(name))
        cache.save()
        return project.manager(**options)

    def test_skip_cache_forces_everything(self, project) -> None:
        cache = self.prepared(project, skip_cache=True)
        for name, repo in project.repos.items():
            for phase in Phase:
                decision = cache.evaluate(repo, project.repo_dir(name), phase)
                assert decision.can_skip is False
                assert decision.trigger is InvalidationTrigger.MANUAL

    def test_force_all(self, project) -> None:
        cache = self.prepared(project, force_all=True)
        alpha = project.repos["alpha"]
        assert cache.can_skip_pre_clone(alpha, project.repo_dir("alpha")) is False
        assert cache.can_skip_post_clone(alpha, project.repo_dir("alpha")) is False

    def test_phase_specific_force(self, project) -> None:
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")

        cache = self.prepared(project, force_pre_clone=True)
        assert cache.can_skip_pre_clone(alpha, path) is False
        assert cache.can_skip_post_clone(alpha, path) is True

        cache = project.manager(force_post_clone=True)
        assert cache.can_skip_pre_clone(alpha, path) is True
        assert cache.can_skip_post_clone(alpha, path) is False

    def test_force_beats_missing_record(self, project) -> None:
        cache = project.manager(force_all=True)
        decision = cache.evaluate(
            project.repos["alpha"], project.repo_dir("alpha"), Phase.PRE_CLONE
        )
        assert decision.trigger is InvalidationTrigger.MANUAL
        assert decision.reason == "cache override"

    def test_skip_cache_records_nothing(self, project) -> None:
        cache = project.manager(skip_cache=True)
        alpha = project.repos["alpha"]
        cache.update_after_success(alpha, project.repo_dir("alpha"), Phase.PRE_CLONE)
        cache.save()

        assert cache.store.get_repository_data("alpha") is None
        assert not project.paths.lock_file.exists()


class TestFailures:
    def test_failure_forces_rerun(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        path = project.repo_dir("alpha")
        run_both_phases(cache, alpha, path)

        cache.update_after_failure(alpha, path, Phase.POST_CLONE)
        record = cache.store.get_repository_data("alpha")
        assert record.post_clone_status is PhaseStatus.FAILED

        decision = cache.evaluate(alpha, path, Phase.POST_CLONE)
        assert decision.trigger is InvalidationTrigger.NO_PREVIOUS_SUCCESS
        assert cache.can_skip_pre_clone(alpha, path) is True

    def test_failed_then_succeeded(self, project) -> None:
        cache = project.manager()
        beta = project.repos["beta"]
        path = project.repo_dir("beta")

        cache.update_after_failure(beta, path, Phase.PRE_CLONE)
        assert cache.can_skip_pre_clone(beta, path) is False

        cache.update_after_success(beta, path, Phase.PRE_CLONE)
        assert cache.can_skip_pre_clone(beta, path) is True


class TestLifecycle:
    def test_state_survives_save_and_reload(self, project) -> None:
        cache = project.manager()
        for name, repo in project.repos.items():
            run_both_phases(cache, repo, project.repo_dir(name))
        cache.save()

        fresh = project.manager()
        assert fresh.store.load_outcome is LoadOutcome.LOADED
        for name, repo in project.repos.items():
            assert fresh.can_skip_pre_clone(repo, project.repo_dir(name)) is True
            assert fresh.can_skip_post_clone(repo, project.repo_dir(name)) is True

    def test_clear_lock_starts_over(self, project) -> None:
        cache = project.manager()
        run_both_phases(cache, project.repos["alpha"], project.repo_dir("alpha"))
        cache.save()

        fresh = project.manager(clear_lock=True)
        assert fresh.store.load_outcome is LoadOutcome.INITIALIZED
        assert not project.paths.lock_file.exists()
        assert fresh.store.get_repository_data("alpha") is None

    def test_dry_run_suppresses_clear_and_save(self, project) -> None:
        cache = project.manager()
        alpha = project.repos["alpha"]
        cache.update_after_success(alpha, project.repo_dir("alpha"), Phase.PRE_CLONE)
        cache.save()
        saved = project.paths.lock_file.read_text()

        dry = project.manager(dry_run=True, clear_lock=True)
        assert dry.store.load_outcome is LoadOutcome.LOADED
        assert dry.can_skip_pre_clone(alpha, project.repo_dir("alpha")) is True

        dry.update_after_success(project.repos["beta"], project.repo_dir("beta"), Phase.PRE_CLONE)
        dry.save()
        assert project.paths.lock_file.read_text() == saved

    def test_initialize_is_idempotent(self, project) -> None:
        cache = project.manager()
        store_result = cache.store.load()
        assert cache.initialize() is cache
        assert cache.store.load() is store_result


class TestReporting:
    def test_stats_count_skips_and_forces(self, project) -> None:
        cache = project.manager()
        repos = list(project.repos.values())
        stats = cache.get_cache_stats(repos)
        assert stats.total == 2
        assert stats.operations_saved == 0
        assert stats.cache_hit_rate == 0

        for repo in repos:
            run_both_phases(cache, repo, project.repo_dir(repo.name))

        stats = cache.get_cache_stats(repos)
        assert stats.pre_clone_skipped == 2
        assert stats.post_clone_skipped == 2
        assert stats.cache_hit_rate == 100

        cache.save()
        forced = project.manager(force_post_clone=True)
        stats = forced.get_cache_stats(repos)
        assert stats.pre_clone_skipped == 2
        assert stats.post_clone_skipped == 0
        assert stats.post_clone_forced == 2
        assert stats.cache_hit_rate == 50

    def test_post_clone_counts_only_cloned_repositories(self, project) -> None:
        cache = project.manager(force_all=True)
        repos = list(project.repos.values())
        stats = cache.get_cache_stats(
            repos, lambda repo: project.paths.packages_dir / f"{repo.name}-missing"
        )
        assert stats.pre_clone_forced == 2
        assert stats.post_clone_forced == 0

    def test_reporting_is_read_only(self, project) -> None:
        cache = project.manager()
        repos = list(project.repos.values())
        alpha = repos[0]
        cache.update_after_success(alpha, project.repo_dir("alpha"), Phase.PRE_CLONE)
        before = cache.store.document.repositories.copy()
        before_globals = cache.store.document.global_checksums.to_dict()

        cache.get_cache_stats(repos)
        cache.display_cache_info(repos)

        assert cache.store.document.repositories == before
        assert cache.store.document.global_checksums.to_dict() == before_globals
        assert not project.paths.lock_file.exists()

    def test_validate_cache_integrity(self, project) -> None:
        cache = project.manager()
        assert cache.validate_cache_integrity() is True
        cache.store.document.format_version = "0.1.0"
        assert cache.validate_cache_integrity() is False
