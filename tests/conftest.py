"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from deployctl.adapters.mock import build_fake_registry
from deployctl.core.models.settings import DeploySettings, RetrySettings, ServiceSettings


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """No DEPLOYCTL_* variable from the developer's shell leaks into tests."""
    import os

    for name in list(os.environ):
        if name.startswith("DEPLOYCTL_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """CLI invocations reconfigure the root logger; undo it after each test."""
    import logging

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers and type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """An empty application checkout."""
    path = tmp_path / "app"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_state_dir: Path, project_dir: Path) -> DeploySettings:
    """Default settings pointed at tmp dirs, with every wait set to zero."""
    return DeploySettings(
        project_path=str(project_dir),
        state_dir=str(tmp_state_dir),
        retry=RetrySettings(max_attempts=3, backoff_seconds=0, database_wait_seconds=0),
        service=ServiceSettings(settle_seconds=0, user="snaily"),
    )


@pytest.fixture
def registry(settings: DeploySettings):
    """A fresh simulated host: nothing installed yet."""
    return build_fake_registry(settings)


@pytest.fixture
def no_sleep():
    """Records requested sleeps instead of sleeping."""
    slept: list[float] = []

    def _sleep(seconds: float) -> None:
        slept.append(seconds)

    _sleep.calls = slept  # type: ignore[attr-defined]
    return _sleep
