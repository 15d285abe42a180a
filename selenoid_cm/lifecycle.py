"""Lifecycle controller.

Every operation is a fixed pipeline of named steps:

    download  = [download]
    configure = [download, configure]
    start     = [download, configure, start]
    stop      = [download, configure, stop]

Steps run in order and the first exception aborts the pipeline. Each step asks
the backend whether its work is already done and skips it unless ``force`` is
set. The backend is chosen once when the controller is created and closed
exactly once when it is closed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from structlog.typing import FilteringBoundLogger

from selenoid_cm.backends.base import Backend
from selenoid_cm.backends.selector import DEFAULT_PING_TIMEOUT, select_backend
from selenoid_cm.config import LifecycleConfig
from selenoid_cm.logging import get_logger
from selenoid_cm.models import ResolvedArtifact, ServiceConfig


@dataclass(frozen=True)
class Step:
    """One pipeline step."""

    name: str
    run: Callable[[], Awaitable[Any]]


class LifecycleController:
    """Sequences download, configure, start and stop against one backend.

    Example:
        async with await LifecycleController.create(config) as lifecycle:
            await lifecycle.start()
    """

    def __init__(
        self,
        config: LifecycleConfig,
        backend: Backend,
        *,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._config = config
        self._backend = backend
        self._log = (log or get_logger(config.quiet)).bind(component="lifecycle")
        self._closed = False

    @classmethod
    async def create(
        cls,
        config: LifecycleConfig,
        *,
        log: FilteringBoundLogger | None = None,
        backend: Backend | None = None,
        ping_timeout: float = DEFAULT_PING_TIMEOUT,
        cancel_event: asyncio.Event | None = None,
    ) -> LifecycleController:
        """Create a controller, probing for the backend unless one is given.

        Raises:
            InitializationError: Backend clients could not be constructed
        """
        log = log or get_logger(config.quiet)
        if backend is None:
            backend = await select_backend(
                config,
                log=log,
                ping_timeout=ping_timeout,
                cancel_event=cancel_event,
            )
        return cls(config, backend, log=log)

    @property
    def backend(self) -> Backend:
        return self._backend

    async def __aenter__(self) -> LifecycleController:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._backend.close()

    # Operations

    async def download(self) -> ResolvedArtifact | None:
        return await self._run([self._download_step])

    async def configure(self) -> ServiceConfig | None:
        return await self._run([self._download_step, self._configure_step])

    async def start(self) -> None:
        await self._run([self._download_step, self._configure_step, self._start_step])

    async def stop(self) -> None:
        await self._run([self._download_step, self._configure_step, self._stop_step])

    async def _run(self, steps: list[Step]) -> Any:
        result = None
        for step in steps:
            self._log.debug("lifecycle.step", step=step.name)
            result = await step.run()
        return result

    # Steps

    @property
    def _download_step(self) -> Step:
        return Step("download", self._download)

    @property
    def _configure_step(self) -> Step:
        return Step("configure", self._configure)

    @property
    def _start_step(self) -> Step:
        return Step("start", self._start)

    @property
    def _stop_step(self) -> Step:
        return Step("stop", self._stop)

    async def _download(self) -> ResolvedArtifact | None:
        if not self._config.force and await self._backend.is_downloaded():
            self._log.info("lifecycle.already_downloaded")
            return None
        self._log.info("lifecycle.downloading")
        return await self._backend.download()

    async def _configure(self) -> ServiceConfig | None:
        if not self._config.force and await self._backend.is_configured():
            self._log.info("lifecycle.already_configured")
            return None
        self._log.info("lifecycle.configuring")
        return await self._backend.configure()

    async def _start(self) -> None:
        if await self._backend.is_running():
            if not self._config.force:
                self._log.info("lifecycle.already_running")
                return
            self._log.info("lifecycle.stopping_previous")
            await self._backend.stop()
        self._log.info("lifecycle.starting")
        await self._backend.start()

    async def _stop(self) -> None:
        if not await self._backend.is_running():
            self._log.info("lifecycle.not_running")
            return
        self._log.info("lifecycle.stopping")
        await self._backend.stop()
