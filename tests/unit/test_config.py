"""Tests for client configuration loading."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from waterfall.pipeline.config import (
    DEFAULT_BASE_URL,
    DEFAULT_STEP_RETRIES,
    ClientConfig,
    ConfigError,
    load_client_config,
    load_config_file,
    load_user_config,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_defaults() -> None:
    config = ClientConfig()

    assert config.base_url == DEFAULT_BASE_URL
    assert config.provider == "auto"
    assert config.secret is None
    assert config.step_retries == DEFAULT_STEP_RETRIES


def test_trailing_slash_is_stripped() -> None:
    assert ClientConfig(base_url="http://host:3001/api/v1/").base_url == "http://host:3001/api/v1"


@pytest.mark.parametrize(
    ("field", "value", "message"),
    [
        ("step_retries", 0, "step_retries"),
        ("timeout", 0.0, "timeout"),
    ],
)
def test_invalid_values_raise(field: str, value: object, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        ClientConfig(**{field: value})  # type: ignore[arg-type]


def test_from_dict_nested_sections() -> None:
    config = ClientConfig.from_dict(
        {
            "provider": "local",
            "server": {"base_url": "http://gpu-box:3001/api/v1", "timeout": 60, "secret": "s"},
            "steps": {"retries": 5, "backoff": 0.5},
        }
    )

    assert config.base_url == "http://gpu-box:3001/api/v1"
    assert config.timeout == 60.0
    assert config.secret == "s"
    assert config.provider == "local"
    assert config.step_retries == 5
    assert config.step_backoff == 0.5


def test_from_dict_flat_keys_and_unknown_keys() -> None:
    config = ClientConfig.from_dict({"base_url": "http://flat/api", "theme": "dark"})
    assert config.base_url == "http://flat/api"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WATERFALL_BASE_URL", "http://env-host/api/v1")
    monkeypatch.setenv("WATERFALL_SECRET", "from-env")
    monkeypatch.setenv("WATERFALL_TIMEOUT", "12.5")

    config = ClientConfig(provider="local").with_env()

    assert config.base_url == "http://env-host/api/v1"
    assert config.secret == "from-env"
    assert config.timeout == 12.5
    assert config.provider == "local"


def test_load_config_file(tmp_path: Path) -> None:
    path = tmp_path / "waterfall.yaml"
    path.write_text(
        "provider: local\nserver:\n  base_url: http://yaml-host/api/v1\nsteps:\n  retries: 2\n"
    )

    config = load_config_file(path)

    assert config.base_url == "http://yaml-host/api/v1"
    assert config.provider == "local"
    assert config.step_retries == 2


def test_load_config_file_missing(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="File not found"):
        load_config_file(tmp_path / "nope.yaml")


def test_load_config_file_empty(tmp_path: Path) -> None:
    path = tmp_path / "waterfall.yaml"
    path.write_text("")

    with pytest.raises(ConfigError, match="Empty file"):
        load_config_file(path)


def test_load_config_file_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "waterfall.yaml"
    path.write_text("server: [unclosed\n")

    with pytest.raises(ConfigError) as exc_info:
        load_config_file(path)
    assert exc_info.value.path == path


def test_load_user_config(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("provider: openrouter\n")

    config = load_user_config(tmp_path)

    assert config is not None
    assert config.provider == "openrouter"


def test_load_user_config_missing_or_broken(tmp_path: Path) -> None:
    assert load_user_config(tmp_path) is None

    (tmp_path / "config.yaml").write_text("provider: [unclosed\n")
    assert load_user_config(tmp_path) is None


class TestLoadClientConfig:
    def test_project_file_wins_over_user_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        user_dir = tmp_path / "user"
        user_dir.mkdir()
        (user_dir / "config.yaml").write_text("provider: user\n")
        project = tmp_path / "project"
        project.mkdir()
        (project / "waterfall.yaml").write_text("provider: project\n")
        monkeypatch.chdir(project)

        assert load_client_config(user_config_dir=user_dir).provider == "project"

    def test_user_file_then_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        user_dir = tmp_path / "user"
        user_dir.mkdir()

        assert load_client_config(user_config_dir=user_dir) == ClientConfig()

        (user_dir / "config.yaml").write_text("provider: user\n")
        assert load_client_config(user_config_dir=user_dir).provider == "user"

    def test_env_wins_over_files(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("provider: file\n")
        monkeypatch.setenv("WATERFALL_PROVIDER", "env")

        assert load_client_config(path, user_config_dir=tmp_path).provider == "env"

    def test_explicit_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_client_config(tmp_path / "missing.yaml")
