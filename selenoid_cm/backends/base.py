"""Backend base class - provisioning abstraction.

A backend knows how to download, configure, run and stop the service on one
substrate. It does NOT decide whether a step is needed: idempotency and
``force`` handling live in the lifecycle controller, which only calls the
``is_*`` probes and the matching actions.

Exactly two backends exist:
- ContainerBackend: Docker Engine + image registry
- DriverBackend: driver manifest + archive downloads (no Docker available)
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import structlog
from structlog.typing import FilteringBoundLogger

from selenoid_cm.config import LifecycleConfig
from selenoid_cm.models import ResolvedArtifact, ServiceConfig

logger = structlog.get_logger()


class Backend(ABC):
    """Capability set shared by all backends: downloadable, configurable,
    runnable and closable."""

    name: str = "backend"

    def __init__(
        self,
        config: LifecycleConfig,
        *,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._config = config
        self._log = (log or logger).bind(backend=self.name)

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    # Downloadable

    @abstractmethod
    async def is_downloaded(self) -> bool:
        """Whether the service artifact is already available locally."""
        ...

    @abstractmethod
    async def download(self) -> ResolvedArtifact | None:
        """Fetch the service artifact."""
        ...

    # Configurable

    async def is_configured(self) -> bool:
        """Whether the configuration file already exists."""
        return self._config.config_path.exists()

    @abstractmethod
    async def configure(self) -> ServiceConfig:
        """Resolve browser versions and write the configuration file."""
        ...

    # Runnable

    @abstractmethod
    async def is_running(self) -> bool:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    # Closable

    async def close(self) -> None:
        """Release held client connections."""
        return None

    # Helpers

    def _selected_browsers(self, available: list[str]) -> list[str]:
        """Intersect the requested browsers with ``available``.

        Unknown names are logged and skipped.
        """
        requested = self._config.requested_browsers()
        if not requested:
            return list(available)

        selected = []
        for name in requested:
            if name in available:
                if name not in selected:
                    selected.append(name)
                continue
            self._log.warning("unsupported_browser", browser=name)
        return selected

    def _write_config(self, cfg: ServiceConfig) -> Path:
        """Write ``cfg`` to the output directory in one replace."""
        path = self._config.config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".browsers-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(cfg.to_json())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._log.info("config.written", path=str(path), browsers=sorted(cfg.root))
        return path
