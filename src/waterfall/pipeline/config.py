"""Client configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from waterfall.observability.logging import get_logger

log = get_logger(__name__)

# Default configuration values
DEFAULT_BASE_URL = "http://localhost:3001/api/v1"
DEFAULT_PROVIDER = "auto"
DEFAULT_TIMEOUT = 300.0
DEFAULT_STEP_RETRIES = 3
DEFAULT_STEP_BACKOFF = 1.0

PROJECT_CONFIG_NAME = "waterfall.yaml"

# XDG-compliant default config directory
_DEFAULT_USER_CONFIG_DIR = Path.home() / ".config" / "waterfall"

# Environment variable -> config field
_ENV_OVERRIDES = {
    "WATERFALL_BASE_URL": "base_url",
    "WATERFALL_PROVIDER": "provider",
    "WATERFALL_SECRET": "secret",
    "WATERFALL_TIMEOUT": "timeout",
}


class ConfigError(Exception):
    """Raised when client configuration cannot be loaded."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load waterfall config at {path}: {reason}")


@dataclass
class ClientConfig:
    """Configuration for talking to the waterfall server.

    Attributes:
        base_url: API root; endpoints are ``{base_url}/waterfall`` and
            ``{base_url}/waterfall/step``.
        provider: Provider preference forwarded with every request.
        timeout: Read timeout in seconds for streaming and step requests.
        secret: Optional shared secret sent as ``X-Solvent-Secret``.
        step_retries: Attempts for a step request before giving up.
        step_backoff: Base delay in seconds; doubles after each failed attempt.
    """

    base_url: str = DEFAULT_BASE_URL
    provider: str = DEFAULT_PROVIDER
    timeout: float = DEFAULT_TIMEOUT
    secret: str | None = None
    step_retries: int = DEFAULT_STEP_RETRIES
    step_backoff: float = DEFAULT_STEP_BACKOFF

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if self.step_retries < 1:
            raise ValueError(f"step_retries must be at least 1, got {self.step_retries}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create config from dictionary.

        Unknown keys are ignored; the nested ``server`` and ``steps`` sections
        of the YAML file are flattened here.

        Args:
            data: Dictionary containing config fields.

        Returns:
            ClientConfig instance.
        """
        server = dict(data.get("server") or {})
        steps = dict(data.get("steps") or {})
        return cls(
            base_url=str(server.get("base_url", data.get("base_url", DEFAULT_BASE_URL))),
            provider=str(data.get("provider", DEFAULT_PROVIDER)),
            timeout=float(server.get("timeout", data.get("timeout", DEFAULT_TIMEOUT))),
            secret=server.get("secret", data.get("secret")),
            step_retries=int(steps.get("retries", DEFAULT_STEP_RETRIES)),
            step_backoff=float(steps.get("backoff", DEFAULT_STEP_BACKOFF)),
        )

    def with_env(self) -> ClientConfig:
        """Return a copy with ``WATERFALL_*`` environment overrides applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for env_name, field_name in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            values[field_name] = float(raw) if field_name == "timeout" else raw
        return ClientConfig(**values)


def _read_yaml(config_path: Path) -> dict[str, Any] | None:
    yaml = YAML()
    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.load(f)
    return dict(data) if data is not None else None


def load_config_file(config_path: Path) -> ClientConfig:
    """Load configuration from an explicit YAML file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        ClientConfig instance.

    Raises:
        ConfigError: If the file is missing, empty or invalid.
    """
    if not config_path.exists():
        raise ConfigError(config_path, "File not found")

    try:
        data = _read_yaml(config_path)
        if data is None:
            raise ConfigError(config_path, "Empty file")
        return ClientConfig.from_dict(data)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(config_path, str(e)) from e


def load_user_config(config_dir: Path | None = None) -> ClientConfig | None:
    """Load the user-level defaults from ~/.config/waterfall/config.yaml.

    A missing or unreadable user file is not fatal: it is logged and skipped.

    Args:
        config_dir: Override config directory (for testing).

    Returns:
        ClientConfig from the user file, or None if there is none.
    """
    config_path = (config_dir or _DEFAULT_USER_CONFIG_DIR) / "config.yaml"
    if not config_path.exists():
        return None

    try:
        data = _read_yaml(config_path)
    except OSError as e:
        log.warning("user_config_load_failed", path=str(config_path), error=str(e))
        return None
    except YAMLError as e:
        log.warning("user_config_parse_failed", path=str(config_path), error=str(e))
        return None

    if data is None:
        return None

    config = ClientConfig.from_dict(data)
    log.debug("user_config_loaded", path=str(config_path))
    return config


def load_client_config(
    config_path: Path | None = None,
    user_config_dir: Path | None = None,
) -> ClientConfig:
    """Resolve the effective client configuration.

    Resolution order (highest priority first):
    1. ``WATERFALL_*`` environment variables
    2. ``config_path``, or ``./waterfall.yaml`` when it exists
    3. User config (~/.config/waterfall/config.yaml)
    4. Built-in defaults

    Args:
        config_path: Explicit config file. Must exist when given.
        user_config_dir: Override user config directory (for testing).

    Returns:
        The effective ClientConfig.

    Raises:
        ConfigError: If an explicit config file cannot be loaded.
    """
    if config_path is None and Path(PROJECT_CONFIG_NAME).exists():
        config_path = Path(PROJECT_CONFIG_NAME)

    if config_path is not None:
        config = load_config_file(config_path)
    else:
        config = load_user_config(user_config_dir) or ClientConfig()

    return config.with_env()
