"""
Configuration management for genorch.

Loads config.yaml from GENORCH_HOME (default ~/.config/genorch), loads an
optional .env file, and applies GENORCH_* environment overrides.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from genorch.errors import ConfigError

COMPLETION_CHECKS = ("history", "queue")

# env var -> (field, cast)
ENV_OVERRIDES = {
    "GENORCH_ROOT": ("root_dir", str),
    "GENORCH_ENGINE_URL": ("engine_url", str),
    "GENORCH_STORAGE_URL": ("storage_url", str),
    "GENORCH_STORAGE_KEY": ("storage_key", str),
    "GENORCH_POLL_TIMEOUT": ("poll_timeout", float),
    "GENORCH_POLL_INTERVAL": ("poll_interval", float),
    "GENORCH_COMPLETION_CHECK": ("completion_check", str),
}


def get_genorch_home() -> Path:
    """Return the genorch home directory."""
    home = os.environ.get("GENORCH_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/genorch").expanduser()


@dataclass
class GenorchConfig:
    """Settings shared by every component of a run."""

    root_dir: str = "/workspace/genorch"
    engine_url: str = "http://127.0.0.1:8188"
    completion_check: str = "history"
    poll_interval: float = 2.0
    poll_timeout: float = 3600.0
    connect_timeout: float = 5.0
    read_timeout: float = 300.0
    storage_url: Optional[str] = None
    storage_key: Optional[str] = None
    signed_url_ttl: int = 3600
    restricted_only_platforms: list[str] = field(
        default_factory=lambda: ["platform_a", "platform_b", "platform_c"]
    )
    unrestricted_platforms: list[str] = field(default_factory=lambda: ["platform_d"])
    fail_fast: bool = False
    notify_timeout: float = 10.0
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    @property
    def root_path(self) -> Path:
        return Path(self.root_dir).expanduser()

    @property
    def http_timeout(self) -> tuple[float, float]:
        """(connect, read) timeout pair for requests."""
        return (self.connect_timeout, self.read_timeout)

    def validate(self) -> None:
        """Reject settings no component can run with."""
        if self.completion_check not in COMPLETION_CHECKS:
            raise ConfigError(
                f"completion_check must be one of {COMPLETION_CHECKS}, got {self.completion_check!r}"
            )
        for name in ("poll_interval", "poll_timeout", "connect_timeout", "read_timeout", "notify_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.signed_url_ttl <= 0:
            raise ConfigError("signed_url_ttl must be positive")
        if not self.unrestricted_platforms:
            raise ConfigError("unrestricted_platforms must name at least one platform")
        overlap = set(self.restricted_only_platforms) & set(self.unrestricted_platforms)
        if overlap:
            raise ConfigError(
                f"platforms cannot be both restricted-only and unrestricted: {sorted(overlap)}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenorchConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)


def _apply_env_overrides(data: dict[str, Any]) -> None:
    for var, (key, cast) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value is None or value == "":
            continue
        try:
            data[key] = cast(value)
        except ValueError:
            raise ConfigError(f"{var}={value!r} is not a valid {cast.__name__}")


def load_config(config_path: Optional[Path] = None) -> GenorchConfig:
    """
    Load genorch configuration.

    Args:
        config_path: Path to config file. Defaults to $GENORCH_HOME/config.yaml

    Returns:
        Validated GenorchConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_genorch_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"genorch config.yaml not found at {config_path}. Run 'genorch init'."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {config_path}")

    env_file = data.get("env_file")
    if env_file:
        env_path = Path(env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    _apply_env_overrides(data)

    config = GenorchConfig.from_dict(data)
    config.validate()
    return config


def config_from_env() -> GenorchConfig:
    """Defaults plus GENORCH_* environment overrides, for runs without a config file."""
    data: dict[str, Any] = {}
    _apply_env_overrides(data)
    config = GenorchConfig.from_dict(data)
    config.validate()
    return config


def default_config_dict(home: Path) -> dict[str, Any]:
    """Defaults written by `genorch init`."""
    defaults = GenorchConfig()
    return {
        "root_dir": defaults.root_dir,
        "engine_url": defaults.engine_url,
        "completion_check": defaults.completion_check,
        "poll_interval": defaults.poll_interval,
        "poll_timeout": defaults.poll_timeout,
        "storage_url": None,
        "storage_key": None,
        "restricted_only_platforms": list(defaults.restricted_only_platforms),
        "unrestricted_platforms": list(defaults.unrestricted_platforms),
        "fail_fast": False,
        "log_level": "INFO",
        "log_format": "pretty",
        "env_file": str(home / ".env"),
    }
