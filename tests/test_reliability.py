"""
Tests for reliability — failure classification, remediations, retrying executor.
"""

import pytest

from deployctl.adapters.mock import (
    APT_LOCK_MESSAGE,
    DB_UNREACHABLE_MESSAGE,
    FakeDatabaseAdmin,
    FakePackageInstaller,
    build_fake_registry,
)
from deployctl.core.errors import ErrorKind, ProvisionError
from deployctl.core.models.receipt import Receipt
from deployctl.core.reliability.classify import FailureCategory, classify_failure
from deployctl.core.reliability.executor import RetryingExecutor
from deployctl.core.reliability.remediation import (
    ClearPackageLock,
    InstallPackage,
    ReinstallRuntime,
    RemediationContext,
    WaitAndRetry,
    default_remediations,
)


def _failed(error: str, exit_code: int = 1, **metadata) -> Receipt:
    return Receipt.failure("test", "op", error=error, exit_code=exit_code, metadata=metadata)


# ── Classification ───────────────────────────────────────────────────


class TestClassifyFailure:
    def test_success_is_not_classified(self):
        assert classify_failure(Receipt.success("test", "op")) is None

    def test_apt_lock(self):
        failure = classify_failure(_failed(APT_LOCK_MESSAGE, exit_code=100))
        assert failure.category == FailureCategory.LOCK_HELD
        assert failure.kind == ErrorKind.TRANSIENT_INFRASTRUCTURE

    def test_dpkg_interrupted(self):
        failure = classify_failure(_failed("E: dpkg was interrupted, you must manually run ..."))
        assert failure.category == FailureCategory.LOCK_HELD

    def test_unable_to_locate_package(self):
        failure = classify_failure(_failed("E: Unable to locate package libfoo-dev", exit_code=100))
        assert failure.category == FailureCategory.PACKAGE_MISSING
        assert failure.subject == "libfoo-dev"
        assert failure.kind == ErrorKind.MISSING_DEPENDENCY

    def test_no_installation_candidate(self):
        failure = classify_failure(_failed("E: Package 'nodejs' has no installation candidate"))
        assert failure.category == FailureCategory.PACKAGE_MISSING
        assert failure.subject == "nodejs"

    def test_database_socket(self):
        failure = classify_failure(_failed(DB_UNREACHABLE_MESSAGE, exit_code=2))
        # the socket message also says "No such file or directory"
        assert failure.category == FailureCategory.DATABASE_UNREACHABLE
        assert failure.kind == ErrorKind.TRANSIENT_INFRASTRUCTURE

    def test_connection_refused(self):
        failure = classify_failure(_failed("could not connect to server: Connection refused"))
        assert failure.category == FailureCategory.DATABASE_UNREACHABLE

    def test_command_not_found(self):
        failure = classify_failure(_failed("bash: pnpm: command not found", exit_code=127))
        assert failure.category == FailureCategory.BINARY_MISSING
        assert failure.subject == "pnpm"

    def test_command_not_found_full_path(self):
        failure = classify_failure(_failed("/usr/local/bin/node: not found"))
        assert failure.subject == "node"

    def test_executable_missing(self):
        failure = classify_failure(_failed("[Errno 2] No such file or directory: '/usr/bin/git'"))
        assert failure.category == FailureCategory.BINARY_MISSING
        assert failure.subject == "git"

    def test_exit_127_fallback(self):
        failure = classify_failure(_failed("", exit_code=127, binary="/opt/node/bin/node"))
        assert failure.category == FailureCategory.BINARY_MISSING
        assert failure.subject == "node"
        assert failure.label == "Exit status 127"

    def test_unrecognised(self):
        assert classify_failure(_failed("Segmentation fault", exit_code=139)) is None


# ── Remediations ─────────────────────────────────────────────────────


class TestRemediationTable:
    def test_every_category_has_an_action(self):
        table = default_remediations()
        assert set(table) == set(FailureCategory)
        assert isinstance(table[FailureCategory.LOCK_HELD], ClearPackageLock)
        assert isinstance(table[FailureCategory.PACKAGE_MISSING], InstallPackage)
        assert isinstance(table[FailureCategory.BINARY_MISSING], ReinstallRuntime)
        assert isinstance(table[FailureCategory.DATABASE_UNREACHABLE], WaitAndRetry)

    def test_read_only(self):
        table = default_remediations()
        with pytest.raises(TypeError):
            table[FailureCategory.LOCK_HELD] = InstallPackage()  # type: ignore[index]


class TestRemediationActions:
    def _ctx(self, settings, no_sleep, **overrides) -> RemediationContext:
        return RemediationContext(
            registry=build_fake_registry(settings, **overrides), settings=settings, sleep=no_sleep,
        )

    def test_clear_lock_leaves_live_holder_alone(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep, packages=FakePackageInstaller(lock_held=True))
        receipt = ClearPackageLock().apply(classify_failure(_failed(APT_LOCK_MESSAGE)), ctx)
        assert receipt.status == "skipped"
        assert ctx.registry.packages.calls("force_release_lock") == []

    def test_clear_stale_lock(self, settings, no_sleep):
        packages = FakePackageInstaller(stale_lock=True)
        ctx = self._ctx(settings, no_sleep, packages=packages)
        receipt = ClearPackageLock().apply(classify_failure(_failed(APT_LOCK_MESSAGE)), ctx)
        assert receipt.ok
        assert packages.stale_lock is False

    def test_install_package_refreshes_first(self, settings, no_sleep):
        packages = FakePackageInstaller(unavailable={"libfoo"})
        ctx = self._ctx(settings, no_sleep, packages=packages)
        failure = classify_failure(_failed("E: Unable to locate package libfoo"))
        receipt = InstallPackage().apply(failure, ctx)
        assert receipt.ok
        assert [op for op, _ in packages.call_log][:1] == ["refresh_index"]
        assert packages.is_installed("libfoo")

    def test_reinstall_runtime_from_packages(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep)
        failure = classify_failure(_failed("node: command not found", exit_code=127))
        receipt = ReinstallRuntime().apply(failure, ctx)
        assert receipt.ok
        assert ctx.registry.packages.calls("install_or_upgrade") == [(("nodejs",),)]
        assert ctx.registry.host.which("node") == "/usr/bin/node"

    def test_reinstall_runtime_from_command(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep)
        failure = classify_failure(_failed("pnpm: command not found", exit_code=127))
        receipt = ReinstallRuntime().apply(failure, ctx)
        assert receipt.ok
        assert ctx.registry.host.calls("run")[0][0] == ("npm", "install", "-g", "pnpm@latest")
        assert ctx.registry.host.which("pnpm", settings.service.search_path()) == "/usr/bin/pnpm"

    def test_reinstall_runtime_noop_when_resolvable(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep)
        ctx.registry.host.add_binary("git")
        receipt = ReinstallRuntime().apply(classify_failure(_failed("git: command not found")), ctx)
        assert receipt.status == "skipped"
        assert ctx.registry.packages.call_log == []

    def test_reinstall_runtime_unknown_binary(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep)
        receipt = ReinstallRuntime().apply(classify_failure(_failed("yarn: command not found")), ctx)
        assert receipt.failed
        assert "yarn" in receipt.error

    def test_wait_starts_database_service(self, settings, no_sleep):
        settings.retry.database_wait_seconds = 4
        ctx = self._ctx(settings, no_sleep)
        receipt = WaitAndRetry().apply(classify_failure(_failed(DB_UNREACHABLE_MESSAGE)), ctx)
        assert receipt.ok
        assert ctx.registry.services.calls("start") == [("postgresql",)]
        assert no_sleep.calls == [4]

    def test_wait_skips_start_when_active(self, settings, no_sleep):
        ctx = self._ctx(settings, no_sleep)
        ctx.registry.services.active.add("postgresql")
        receipt = WaitAndRetry().apply(classify_failure(_failed(DB_UNREACHABLE_MESSAGE)), ctx)
        assert receipt.status == "skipped"
        assert ctx.registry.services.calls("start") == []


# ── Retrying executor ────────────────────────────────────────────────


class _Scripted:
    """Operation returning the given receipts in order (last one repeats)."""

    def __init__(self, *receipts: Receipt):
        self.receipts = list(receipts)
        self.calls = 0

    def __call__(self) -> Receipt:
        self.calls += 1
        index = min(self.calls, len(self.receipts)) - 1
        return self.receipts[index]


class TestRetryingExecutor:
    def _executor(self, settings, no_sleep, **overrides) -> RetryingExecutor:
        ctx = RemediationContext(
            registry=build_fake_registry(settings, **overrides), settings=settings, sleep=no_sleep,
        )
        return RetryingExecutor(ctx, max_attempts=3, backoff_seconds=2.0)

    def test_success_first_attempt(self, settings, no_sleep):
        op = _Scripted(Receipt.success("test", "op"))
        result = self._executor(settings, no_sleep).execute(op)
        assert result.ok
        assert result.attempts == 1
        assert no_sleep.calls == []

    def test_retry_then_success(self, settings, no_sleep):
        op = _Scripted(_failed(DB_UNREACHABLE_MESSAGE), Receipt.success("test", "op"))
        result = self._executor(settings, no_sleep).execute(op)
        assert result.ok
        assert result.attempts == 2
        assert len(result.remediations) == 1
        assert 2.0 in no_sleep.calls

    def test_retry_bound(self, settings, no_sleep):
        op = _Scripted(_failed(APT_LOCK_MESSAGE, exit_code=100))
        executor = self._executor(settings, no_sleep, packages=FakePackageInstaller(lock_held=True))
        result = executor.execute(op)
        assert not result.ok
        assert op.calls == 3
        assert result.attempts == 3
        assert result.kind == ErrorKind.TRANSIENT_INFRASTRUCTURE
        # one remediation between each pair of attempts
        assert len(result.remediations) == 2

    def test_per_call_limit(self, settings, no_sleep):
        op = _Scripted(_failed(APT_LOCK_MESSAGE))
        result = self._executor(settings, no_sleep).execute(op, max_attempts=1)
        assert op.calls == 1
        assert result.remediations == []

    def test_unclassified_is_terminal(self, settings, no_sleep):
        op = _Scripted(_failed("Segmentation fault", exit_code=139))
        result = self._executor(settings, no_sleep).execute(op)
        assert op.calls == 1
        assert result.kind == ErrorKind.UNCLASSIFIED
        assert result.failure is None

    def test_category_without_remediation_is_terminal(self, settings, no_sleep):
        ctx = RemediationContext(registry=build_fake_registry(settings), settings=settings, sleep=no_sleep)
        executor = RetryingExecutor(ctx, remediations={}, max_attempts=3)
        op = _Scripted(_failed(APT_LOCK_MESSAGE))
        result = executor.execute(op)
        assert op.calls == 1
        assert result.kind == ErrorKind.TRANSIENT_INFRASTRUCTURE

    def test_custom_classifier(self, settings, no_sleep):
        op = _Scripted(_failed(APT_LOCK_MESSAGE))
        result = self._executor(settings, no_sleep).execute(op, classify=lambda r: None)
        assert op.calls == 1
        assert result.kind == ErrorKind.UNCLASSIFIED

    def test_database_scenario_recovers(self, settings, no_sleep):
        database = FakeDatabaseAdmin(unreachable_pings=2)
        executor = self._executor(settings, no_sleep, database=database)
        result = executor.execute(database.ping)
        assert result.ok
        assert result.attempts == 3

    def test_raise_for_failure(self, settings, no_sleep):
        op = _Scripted(_failed("Segmentation fault", exit_code=139))
        result = self._executor(settings, no_sleep).execute(op)
        with pytest.raises(ProvisionError) as exc_info:
            result.raise_for_failure("build")
        assert exc_info.value.resource == "build"
        assert exc_info.value.kind == ErrorKind.UNCLASSIFIED
        assert "Segmentation fault" in exc_info.value.output

    def test_from_settings(self, settings, no_sleep):
        settings.retry.max_attempts = 5
        ctx = RemediationContext(registry=build_fake_registry(settings), settings=settings, sleep=no_sleep)
        assert RetryingExecutor.from_settings(ctx).max_attempts == 5

    def test_invalid_max_attempts(self, settings, no_sleep):
        ctx = RemediationContext(registry=build_fake_registry(settings), settings=settings, sleep=no_sleep)
        with pytest.raises(ValueError):
            RetryingExecutor(ctx, max_attempts=0)
