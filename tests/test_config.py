"""
Tests for configuration loading — deploy.yml discovery, validation, overrides.
"""

import textwrap
from pathlib import Path

import pytest

from deployctl.core.config.loader import find_config_file, load_settings
from deployctl.core.errors import ConfigError


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content))
    return path


class TestFindConfigFile:
    def test_finds_in_start_dir(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", "app_name: x\n")
        assert find_config_file(tmp_path) == config

    def test_walks_up(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", "app_name: x\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == config

    def test_not_found(self, tmp_path: Path):
        assert find_config_file(tmp_path) is None


class TestLoadSettings:
    def test_full_file(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", """\
            app_name: demo
            project_path: /srv/demo
            database:
              role: demo
              name: demo_db
            service:
              name: demo-web
              port: 8080
            retry:
              max_attempts: 5
              backoff_seconds: 0.5
        """)
        s = load_settings(config)
        assert s.app_name == "demo"
        assert s.database.role == "demo"
        assert s.database.name == "demo_db"
        assert s.service.unit_name == "demo-web.service"
        assert s.retry.max_attempts == 5
        # untouched sections keep their defaults
        assert s.build.runner == "pnpm"

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", "")
        assert load_settings(config).app_name == "snaily-cadv4"

    def test_no_file_gives_defaults(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = load_settings()
        assert s.database.role == "snailycad"

    def test_search_disabled(self, tmp_path: Path, monkeypatch):
        _write(tmp_path / "deploy.yml", "app_name: found\n")
        monkeypatch.chdir(tmp_path)
        assert load_settings(search=False).app_name == "snaily-cadv4"
        assert load_settings().app_name == "found"

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", "app_name: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(config)

    def test_not_a_mapping(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", "- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(config)

    def test_validation_error(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", """\
            retry:
              max_attempts: 0
        """)
        with pytest.raises(ConfigError, match="Invalid deploy configuration"):
            load_settings(config)

    def test_invalid_env_pattern(self, tmp_path: Path):
        config = _write(tmp_path / "deploy.yml", """\
            env:
              keys:
                - name: TOKEN
                  pattern: "([broken"
        """)
        with pytest.raises(ConfigError):
            load_settings(config)


class TestEnvironmentOverrides:
    def test_state_dir_and_project_path(self, tmp_path: Path, monkeypatch):
        config = _write(tmp_path / "deploy.yml", "project_path: /srv/from-file\n")
        monkeypatch.setenv("DEPLOYCTL_STATE_DIR", str(tmp_path / "state"))
        monkeypatch.setenv("DEPLOYCTL_PROJECT_PATH", "/srv/from-env")
        s = load_settings(config)
        assert s.state_root == tmp_path / "state"
        assert s.project_path == "/srv/from-env"

    def test_db_password(self, tmp_path: Path, monkeypatch):
        config = _write(tmp_path / "deploy.yml", """\
            database:
              role: demo
        """)
        monkeypatch.setenv("DEPLOYCTL_DB_PASSWORD", "s3cret-value")
        s = load_settings(config)
        assert s.database.password == "s3cret-value"
        assert s.database.role == "demo"

    def test_db_password_without_database_section(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DEPLOYCTL_DB_PASSWORD", "s3cret-value")
        assert load_settings().database.password == "s3cret-value"
