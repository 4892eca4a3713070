"""
End-to-end install runs against the simulated host.

The same registry object is reused across runs of one test, so what
the first run installs is still there for the second, as on a real host.
"""

import logging

from deployctl.adapters.mock import FakeHost, FakePackageInstaller, build_fake_registry
from deployctl.core.models.state import InstallPhase, InstallState
from deployctl.core.persistence.audit import AuditWriter
from deployctl.core.persistence.run_lock import RunLock
from deployctl.core.persistence.state_file import load_state, save_state
from deployctl.core.use_cases.install import effective_settings, generate_operation_id, run_install
from deployctl.core.use_cases.status import Severity, diagnose

UNIT = "start-snaily-cadv4.service"


def _install(settings, registry, no_sleep, **kwargs):
    return run_install(settings, registry=registry, sleep=no_sleep, **kwargs)


class TestFreshHost:
    def test_first_run_pauses_after_dependencies(self, settings, registry, no_sleep):
        result = _install(settings, registry, no_sleep)

        assert result.ok
        assert result.paused
        assert result.status == "paused"
        assert result.phase_before == InstallPhase.NOT_STARTED
        assert result.phase_after == InstallPhase.DEPENDENCIES_READY
        assert result.report.phase_names == ["dependencies"]
        assert load_state(settings.state_path).phase == InstallPhase.DEPENDENCIES_READY
        # nothing from later phases was touched
        assert registry.database.call_log == []
        assert registry.services.units == {}

    def test_pnpm_installed_through_its_runtime(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        assert registry.host.which("pnpm", settings.service.search_path()) == "/usr/bin/pnpm"
        assert (("npm", "install", "-g", "pnpm@latest"), None) in registry.host.calls("run")

    def test_second_run_completes(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        result = _install(settings, registry, no_sleep)

        assert result.ok
        assert not result.paused
        assert result.phase_after == InstallPhase.COMPLETE
        assert result.report.phase_names == ["resources", "service"]
        state = load_state(settings.state_path)
        assert state.phase == InstallPhase.COMPLETE
        assert state.project_path == str(settings.project_root)
        assert registry.services.is_active(UNIT)
        assert settings.env_path.is_file()

    def test_complete_install_is_healthy(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        _install(settings, registry, no_sleep)

        report = diagnose(settings, registry)
        assert report.error_count == 0
        assert report.exit_code == 0
        warned = {i.subject for i in report.issues if i.severity == Severity.WARNING}
        assert warned == {"env-file", "port"}

    def test_third_run_is_a_no_op(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        _install(settings, registry, no_sleep)
        registry.database.reset()
        registry.services.reset()

        result = _install(settings, registry, no_sleep)
        assert result.ok
        assert result.report.phases == []
        assert registry.database.call_log == []
        assert registry.services.call_log == []

    def test_last_run_recorded(self, settings, registry, no_sleep):
        first = _install(settings, registry, no_sleep)
        record = load_state(settings.state_path).last_run
        assert record.operation_id == first.operation_id
        assert record.status == "paused"
        assert record.phase_after == "dependencies_ready"
        assert record.ended_at >= record.started_at

        _install(settings, registry, no_sleep)
        record = load_state(settings.state_path).last_run
        assert record.status == "ok"
        assert record.phase_before == "dependencies_ready"
        assert record.phase_after == "complete"

    def test_run_lock_released(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        assert not settings.lock_path.exists()


class TestReconfigure:
    def _complete(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        _install(settings, registry, no_sleep)

    def test_deleted_unit_is_one_error(self, settings, registry, no_sleep):
        self._complete(settings, registry, no_sleep)
        del registry.services.units[UNIT]

        report = diagnose(settings, registry)
        assert report.error_count == 1
        assert report.exit_code == 1
        errors = [i for i in report.issues if i.severity == Severity.ERROR]
        assert errors[0].subject == "service-unit"
        assert "--reconfigure" in errors[0].remediation_hint

    def test_reconfigure_reruns_only_the_service_phase(self, settings, registry, no_sleep):
        self._complete(settings, registry, no_sleep)
        del registry.services.units[UNIT]

        result = _install(settings, registry, no_sleep, reconfigure=True)

        assert result.ok
        assert result.reconfigured
        assert result.report.phase_names == ["service"]
        assert result.phase_after == InstallPhase.COMPLETE
        assert len(registry.services.calls("install_unit")) == 2
        assert len(registry.database.calls("create_role")) == 1
        assert len(registry.database.calls("create_database")) == 1
        assert diagnose(settings, registry).error_count == 0

    def test_reconfigure_before_complete_just_continues(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        result = _install(settings, registry, no_sleep, reconfigure=True)
        assert not result.reconfigured
        assert result.phase_after == InstallPhase.COMPLETE


class TestFailures:
    def test_lock_conflict_changes_nothing(self, settings, registry, no_sleep):
        save_state(InstallState(phase=InstallPhase.DEPENDENCIES_READY), settings.state_path)

        with RunLock(settings.lock_path, command="install"):
            result = _install(settings, registry, no_sleep)

        assert not result.ok
        assert result.error_kind == "resource_conflict"
        assert registry.packages.call_log == []
        assert load_state(settings.state_path).phase == InstallPhase.DEPENDENCIES_READY
        entry = AuditWriter(settings.audit_path).read_all()[-1]
        assert entry.status == "failed"
        assert entry.error_kind == "resource_conflict"

    def test_package_lock_held_throughout(self, settings, no_sleep):
        host = FakeHost()
        registry = build_fake_registry(
            settings, host=host, packages=FakePackageInstaller(host=host, lock_held=True),
        )
        result = _install(settings, registry, no_sleep)

        assert not result.ok
        assert result.error_kind == "transient_infrastructure"
        assert result.failed_phase == "dependencies"
        assert result.failed_resource == "packages"
        assert "Could not get lock" in result.output
        assert len(registry.packages.calls("install_or_upgrade")) == 3
        assert load_state(settings.state_path).phase == InstallPhase.NOT_STARTED
        assert not settings.lock_path.exists()

    def test_failed_build_keeps_dependencies_committed(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        registry.build.set_failure("build", "ELIFECYCLE Command failed with exit code 1.")

        result = _install(settings, registry, no_sleep)
        assert result.error_kind == "unclassified"
        assert result.failed_phase == "resources"
        assert result.failed_resource == "build"
        assert load_state(settings.state_path).phase == InstallPhase.DEPENDENCIES_READY

        # fix the cause and run again: existing role and database are reused
        registry.build.clear_failure("build")
        result = _install(settings, registry, no_sleep)
        assert result.phase_after == InstallPhase.COMPLETE
        assert len(registry.database.calls("create_role")) == 1

    def test_backoff_uses_injected_sleep(self, settings, no_sleep):
        settings.retry.backoff_seconds = 2
        host = FakeHost()
        registry = build_fake_registry(
            settings, host=host, packages=FakePackageInstaller(host=host, lock_held=True),
        )
        _install(settings, registry, no_sleep)
        assert no_sleep.calls == [2, 2]


class TestAudit:
    def test_one_entry_per_run(self, settings, registry, no_sleep):
        first = _install(settings, registry, no_sleep)
        second = _install(settings, registry, no_sleep)

        entries = AuditWriter(settings.audit_path).read_all()
        assert [e.operation_id for e in entries] == [first.operation_id, second.operation_id]
        assert [e.status for e in entries] == ["paused", "ok"]
        assert entries[0].phases_run == ["dependencies"]
        assert entries[1].phase_before == "dependencies_ready"
        assert entries[1].phase_after == "complete"
        assert all(e.command == "install" for e in entries)

    def test_operation_ids_unique(self):
        assert generate_operation_id() != generate_operation_id()
        assert generate_operation_id().startswith("op-")


class TestEffectiveSettings:
    def test_recorded_path_wins(self, settings, caplog):
        state = InstallState(phase=InstallPhase.COMPLETE, project_path="/srv/elsewhere")
        with caplog.at_level(logging.WARNING):
            effective = effective_settings(settings, state)
        assert effective.project_path == "/srv/elsewhere"
        assert settings.project_path != "/srv/elsewhere"
        assert "differs from the recorded one" in caplog.text

    def test_unrecorded_uses_configuration(self, settings):
        assert effective_settings(settings, InstallState()) is settings


class TestPreInstallBackup:
    def test_backup_before_resources(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        (settings.project_root / "package.json").write_text("{}")

        result = _install(settings, registry, no_sleep)

        assert result.backup_path is not None
        assert result.to_dict()["backup"] == result.backup_path
        archives = list(settings.backup_dir.glob("backup_*.tar.gz"))
        assert [str(a) for a in archives] == [result.backup_path]

    def test_no_backup_on_first_run(self, settings, registry, no_sleep):
        (settings.project_root / "package.json").write_text("{}")
        result = _install(settings, registry, no_sleep)
        assert result.backup_path is None
        assert not settings.backup_dir.exists()

    def test_empty_project_not_archived(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        result = _install(settings, registry, no_sleep)
        assert result.backup_path is None
        assert "backup" not in result.to_dict()

    def test_disabled(self, settings, registry, no_sleep):
        settings.backup.before_install = False
        _install(settings, registry, no_sleep)
        (settings.project_root / "package.json").write_text("{}")
        assert _install(settings, registry, no_sleep).backup_path is None

    def test_nothing_pending_means_no_backup(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        _install(settings, registry, no_sleep)
        result = _install(settings, registry, no_sleep)
        assert result.backup_path is None


class TestMisc:
    def test_low_disk_warning(self, settings, no_sleep, caplog):
        registry = build_fake_registry(settings, host=FakeHost(free_gb=1.0))
        with caplog.at_level(logging.WARNING):
            _install(settings, registry, no_sleep)
        assert "Low disk space" in caplog.text

    def test_mock_mode_leaves_real_state_alone(self, settings):
        for _ in range(2):
            result = run_install(settings, mock_mode=True, sleep=lambda s: None)
            assert result.ok
            assert result.phase_after == InstallPhase.DEPENDENCIES_READY
        assert not settings.state_path.exists()
        assert not settings.audit_path.exists()
        assert not settings.env_path.exists()

    def test_mock_mode_starts_from_the_real_phase(self, settings, registry, no_sleep):
        _install(settings, registry, no_sleep)
        settings.env_path.write_text("DISCORD_SERVER_ID=123456789012345678\n")

        result = run_install(settings, registry=registry, mock_mode=True, sleep=no_sleep)

        assert result.ok
        assert result.report.phase_names == ["resources", "service"]
        assert result.phase_after == InstallPhase.COMPLETE
        assert load_state(settings.state_path).phase == InstallPhase.DEPENDENCIES_READY
        assert settings.env_path.read_text() == "DISCORD_SERVER_ID=123456789012345678\n"
        assert list(settings.project_root.glob(".env.bak.*")) == []

    def test_to_dict(self, settings, registry, no_sleep):
        data = _install(settings, registry, no_sleep).to_dict()
        assert data["status"] == "paused"
        assert data["phase_after"] == "dependencies_ready"
        assert data["report"]["paused"] is True
        assert "error" not in data
