"""Backend selection.

Docker is preferred whenever a daemon answers; otherwise drivers are used.
The probe runs once per lifecycle controller.
"""

from __future__ import annotations

import asyncio

import aiodocker
import structlog
from structlog.typing import FilteringBoundLogger

from selenoid_cm.backends.base import Backend
from selenoid_cm.backends.docker import ContainerBackend
from selenoid_cm.backends.drivers import DriverBackend
from selenoid_cm.config import LifecycleConfig

logger = structlog.get_logger()

DEFAULT_PING_TIMEOUT = 5.0


async def probe_docker(timeout: float = DEFAULT_PING_TIMEOUT) -> aiodocker.Docker | None:
    """Return a live Docker client from the ambient environment, or None."""
    docker = None
    try:
        docker = aiodocker.Docker()
        await asyncio.wait_for(docker.version(), timeout=timeout)
    except Exception as e:
        logger.debug("docker.unavailable", error=str(e) or type(e).__name__)
        if docker is not None:
            await docker.close()
        return None
    return docker


async def select_backend(
    config: LifecycleConfig,
    *,
    log: FilteringBoundLogger | None = None,
    ping_timeout: float = DEFAULT_PING_TIMEOUT,
    cancel_event: asyncio.Event | None = None,
) -> Backend:
    """Pick the Docker backend if Docker is reachable, else the drivers one.

    Raises:
        InitializationError: Docker is reachable but the registry is not
    """
    docker = await probe_docker(ping_timeout)
    if docker is None:
        (log or logger).info("backend.selected", backend=DriverBackend.name)
        return DriverBackend(config, log=log)

    (log or logger).info("backend.selected", backend=ContainerBackend.name)
    return await ContainerBackend.create(
        config,
        docker=docker,
        log=log,
        cancel_event=cancel_event,
    )
