"""
Tests for persistence — state file, run lock and audit ledger.
"""

import json
import os
import signal
from pathlib import Path

import pytest

from deployctl.core.errors import ErrorKind, ResourceConflictError
from deployctl.core.models.state import InstallPhase, InstallState
from deployctl.core.persistence.audit import AuditEntry, AuditWriter
from deployctl.core.persistence.run_lock import RunLock, force_release, holder_alive, read_holder
from deployctl.core.persistence.state_file import StateStore, load_state, save_state


class TestStateFile:
    """Tests for state file persistence."""

    def test_save_and_load(self, tmp_path: Path):
        path = tmp_path / "state" / "install.json"
        state = InstallState(phase=InstallPhase.DEPENDENCIES_READY, project_path="/srv/app")
        save_state(state, path)
        assert path.is_file()

        loaded = load_state(path)
        assert loaded.phase == InstallPhase.DEPENDENCIES_READY
        assert loaded.project_path == "/srv/app"

    def test_load_missing_returns_fresh(self, tmp_path: Path):
        state = load_state(tmp_path / "nonexistent.json")
        assert state.phase == InstallPhase.NOT_STARTED

    def test_load_corrupt_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "corrupt.json"
        path.write_text("not json at all {{{")
        assert load_state(path).phase == InstallPhase.NOT_STARTED

    def test_load_unknown_phase_returns_fresh(self, tmp_path: Path):
        path = tmp_path / "install.json"
        path.write_text(json.dumps({"phase": "halfway"}))
        assert load_state(path).phase == InstallPhase.NOT_STARTED

    def test_save_is_valid_json(self, tmp_path: Path):
        path = tmp_path / "install.json"
        save_state(InstallState(phase=InstallPhase.COMPLETE), path)
        data = json.loads(path.read_text())
        assert data["phase"] == "complete"
        assert data["schema_version"] == 1

    def test_save_atomic_no_partial(self, tmp_path: Path):
        path = tmp_path / "install.json"
        save_state(InstallState(), path)
        assert list(tmp_path.glob(".install_*.tmp")) == []

    def test_failed_write_keeps_previous(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "install.json"
        save_state(InstallState(phase=InstallPhase.DEPENDENCIES_READY), path)

        def _boom(self, target):
            raise OSError("disk full")

        monkeypatch.setattr(Path, "replace", _boom)
        with pytest.raises(OSError):
            save_state(InstallState(phase=InstallPhase.COMPLETE), path)
        monkeypatch.undo()

        assert load_state(path).phase == InstallPhase.DEPENDENCIES_READY
        assert list(tmp_path.glob(".install_*.tmp")) == []

    def test_store(self, tmp_path: Path):
        store = StateStore(tmp_path / "install.json")
        assert not store.exists()
        store.save(InstallState(phase=InstallPhase.COMPLETE))
        assert store.exists()
        assert store.load().phase == InstallPhase.COMPLETE
        assert store.delete() is True
        assert store.delete() is False


class TestRunLock:
    def test_acquire_and_release(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        lock = RunLock(path, command="install")
        lock.acquire()
        assert lock.held
        holder = read_holder(path)
        assert holder["pid"] == os.getpid()
        assert holder["command"] == "install"
        lock.release()
        assert not path.exists()

    def test_second_acquire_fails_fast(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        with RunLock(path, command="install"):
            with pytest.raises(ResourceConflictError) as exc_info:
                RunLock(path, command="install").acquire()
        assert exc_info.value.kind == ErrorKind.RESOURCE_CONFLICT
        assert "deployctl unlock" in exc_info.value.message

    def test_released_on_exception(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        with pytest.raises(RuntimeError):
            with RunLock(path):
                raise RuntimeError("boom")
        assert not path.exists()

    def test_released_on_keyboard_interrupt(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        with pytest.raises(KeyboardInterrupt):
            with RunLock(path):
                raise KeyboardInterrupt
        assert not path.exists()

    def test_sigterm_handler_restored(self, tmp_path: Path):
        before = signal.getsignal(signal.SIGTERM)
        with RunLock(tmp_path / "install.lock"):
            assert signal.getsignal(signal.SIGTERM) is not before
        assert signal.getsignal(signal.SIGTERM) == before

    def test_sigterm_releases(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        with pytest.raises(SystemExit) as exc_info:
            with RunLock(path):
                os.kill(os.getpid(), signal.SIGTERM)
        assert exc_info.value.code == 128 + signal.SIGTERM
        assert not path.exists()

    def test_stale_lock_is_not_taken_over(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        path.write_text(json.dumps({"pid": 999999999, "command": "install"}))
        with pytest.raises(ResourceConflictError):
            RunLock(path).acquire()
        assert path.exists()

    def test_force_release(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        path.write_text(json.dumps({"pid": 1}))
        assert force_release(path) is True
        assert force_release(path) is False


class TestLockHolder:
    def test_read_missing(self, tmp_path: Path):
        assert read_holder(tmp_path / "none.lock") is None

    def test_read_unreadable(self, tmp_path: Path):
        path = tmp_path / "install.lock"
        path.write_text("garbage")
        assert read_holder(path) == {}

    def test_alive_self(self):
        import socket

        assert holder_alive({"pid": os.getpid(), "hostname": socket.gethostname()})

    def test_dead_pid(self):
        assert not holder_alive({"pid": 999999999})

    def test_missing_pid(self):
        assert not holder_alive({})
        assert not holder_alive(None)

    def test_other_host_assumed_alive(self):
        assert holder_alive({"pid": 4242, "hostname": "some-other-host.invalid"})


class TestAuditLedger:
    def _entry(self, **kwargs) -> AuditEntry:
        defaults = dict(operation_id="op-1", command="install", status="ok")
        defaults.update(kwargs)
        return AuditEntry(**defaults)

    def test_write_and_read(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "state" / "audit.ndjson")
        writer.write(self._entry(phase_before="not_started", phase_after="dependencies_ready"))
        entries = writer.read_all()
        assert len(entries) == 1
        assert entries[0].phase_after == "dependencies_ready"

    def test_append_only(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(3):
            writer.write(self._entry(operation_id=f"op-{i}"))
        assert writer.entry_count() == 3
        lines = (tmp_path / "audit.ndjson").read_text().splitlines()
        assert [json.loads(line)["operation_id"] for line in lines] == ["op-0", "op-1", "op-2"]

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(self._entry(operation_id=f"op-{i}"))
        recent = writer.read_recent(2)
        assert [e.operation_id for e in recent] == ["op-3", "op-4"]
        assert writer.read_recent(0) == []

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path)
        writer.write(self._entry(operation_id="good-1"))
        with path.open("a") as f:
            f.write("{not json\n")
        writer.write(self._entry(operation_id="good-2"))
        assert [e.operation_id for e in writer.read_all()] == ["good-1", "good-2"]

    def test_missing_ledger(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "none.ndjson")
        assert writer.read_all() == []
        assert writer.entry_count() == 0

    def test_unwritable_ledger_does_not_raise(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        AuditWriter(blocker / "audit.ndjson").write(self._entry())
