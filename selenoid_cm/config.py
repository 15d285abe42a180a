"""selenoid-cm configuration management.

Configuration sources (in priority order):
1. Command line flags (via LifecycleConfig.from_settings overrides)
2. Environment variables (SELENOID_CM_ prefix)
3. Config file (selenoid-cm.yaml)
4. Defaults
"""

from __future__ import annotations

import os
import platform
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REGISTRY_URL = "https://registry.hub.docker.com"
DEFAULT_BROWSERS_JSON_URL = "https://raw.githubusercontent.com/aerokube/cm/master/browsers.json"
DEFAULT_GITHUB_BASE_URL = "https://api.github.com"
CONFIG_FILE_NAME = "browsers.json"
LATEST = "latest"

# Python machine names -> names used in driver manifests and release assets
_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
}


def default_os() -> str:
    """Current OS in manifest naming (linux, darwin, windows)."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return sys.platform.rstrip("0123456789")


def default_arch() -> str:
    """Current architecture in manifest naming (amd64, 386, arm64, arm)."""
    machine = platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine)


def default_output_dir() -> Path:
    return Path.home() / ".aerokube" / "selenoid"


class Settings(BaseSettings):
    """Default values for every lifecycle run."""

    model_config = SettingsConfigDict(
        env_prefix="SELENOID_CM_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    output_dir: Path = Field(default_factory=default_output_dir)
    registry_url: str = DEFAULT_REGISTRY_URL
    browsers_json_url: str = DEFAULT_BROWSERS_JSON_URL
    github_base_url: str = DEFAULT_GITHUB_BASE_URL

    # Process only the last N browser versions (0 = all)
    last_versions: int = 5

    # tmpfs size in MB attached to every browser container (0 = disabled)
    tmpfs: int = 0

    # Seconds to wait for the Docker daemon to answer the availability probe
    docker_ping_timeout: float = 5.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # File values arrive as init kwargs; the environment wins over them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings


class LifecycleConfig(BaseModel):
    """Input of one lifecycle run. Read-only once built."""

    model_config = ConfigDict(frozen=True)

    quiet: bool = False
    force: bool = False
    output_dir: Path = Field(default_factory=default_output_dir)
    browsers: str = ""
    download: bool = True

    # Docker specific
    last_versions: int = 5
    pull: bool = False
    registry_url: str = DEFAULT_REGISTRY_URL
    tmpfs: int = 0

    # Drivers specific
    browsers_json_url: str = DEFAULT_BROWSERS_JSON_URL
    github_base_url: str = DEFAULT_GITHUB_BASE_URL
    os: str = Field(default_factory=default_os)
    arch: str = Field(default_factory=default_arch)
    version: str = LATEST

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> LifecycleConfig:
        """Build a config from settings; ``None`` overrides keep the setting."""
        values: dict[str, Any] = {
            "output_dir": settings.output_dir,
            "registry_url": settings.registry_url,
            "browsers_json_url": settings.browsers_json_url,
            "github_base_url": settings.github_base_url,
            "last_versions": settings.last_versions,
            "tmpfs": settings.tmpfs,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def config_path(self) -> Path:
        return self.output_dir / CONFIG_FILE_NAME

    @property
    def requested_version(self) -> str | None:
        """Explicit version, or None when the newest one should be resolved."""
        if not self.version or self.version == LATEST:
            return None
        return self.version

    def requested_browsers(self) -> list[str]:
        """Browser allow-list; empty means every known browser."""
        return [name.strip() for name in self.browsers.split(",") if name.strip()]


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. SELENOID_CM_CONFIG_FILE environment variable
    2. ./selenoid-cm.yaml
    """
    config_paths = [
        os.environ.get("SELENOID_CM_CONFIG_FILE"),
        Path("selenoid-cm.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (file values, overridden by environment)."""
    return Settings(**_load_config_file())
