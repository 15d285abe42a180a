"""Shared fixtures for selenoid-cm tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
import structlog

from selenoid_cm.config import LifecycleConfig, get_settings


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "selenoid"


@pytest.fixture
def make_config(output_dir: Path) -> Callable[..., LifecycleConfig]:
    """Factory for configs writing into a temporary directory."""

    def factory(**overrides: Any) -> LifecycleConfig:
        values: dict[str, Any] = {
            "output_dir": output_dir,
            "registry_url": "http://registry.test",
            "browsers_json_url": "http://drivers.test/browsers.json",
            "github_base_url": "http://github.test",
            "os": "linux",
            "arch": "amd64",
        }
        values.update(overrides)
        return LifecycleConfig(**values)

    return factory


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_structlog():
    # the CLI installs a renderer bound to the runner's stderr
    yield
    structlog.reset_defaults()
