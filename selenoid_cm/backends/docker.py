"""Docker backend implementation using aiodocker.

Browser images are resolved from the image registry and pulled into the local
Docker Engine; the service itself runs as a single container named
``selenoid`` exposing port 4444. Pulls are consumed as a stream of status
records so that a cancel event can interrupt a pull between two records.

Per-browser and per-tag failures (tag listing, pulls) only drop that browser
or tag from the generated configuration.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from contextlib import aclosing
from pathlib import Path
from typing import Any

import aiodocker
import aiohttp
from aiodocker.exceptions import DockerError
from structlog.typing import FilteringBoundLogger

from selenoid_cm.backends.base import Backend
from selenoid_cm.config import LifecycleConfig
from selenoid_cm.errors import (
    FetchError,
    InitializationError,
    InvariantViolationError,
    StartError,
    StopError,
)
from selenoid_cm.models import BrowserEntry, BrowserVersions, ResolvedArtifact, ServiceConfig
from selenoid_cm.registry import RegistryClient
from selenoid_cm.versions import limit, sort_tags

SERVICE_IMAGE = "aerokube/selenoid"
SERVICE_CONTAINER_NAME = "selenoid"
SERVICE_PORT = 4444

FIREFOX = "firefox"
OPERA = "opera"
LEGACY_OPERA_TAG = "12.16"
LEGACY_PATH = "/wd/hub"

SUPPORTED_BROWSERS: dict[str, str] = {
    "firefox": "selenoid/firefox",
    "chrome": "selenoid/chrome",
    "opera": "selenoid/opera",
}

DOCKER_SOCKET = "/var/run/docker.sock"
# Selenoid reads browsers.json from here inside its container
CONTAINER_CONFIG_DIR = "/etc/selenoid"


def image_with_tag(image: str, tag: str) -> str:
    return f"{image}:{tag}"


def browser_path(browser: str, tag: str) -> str:
    """URL path prefix the browser image listens on."""
    if browser == FIREFOX or (browser == OPERA and tag == LEGACY_OPERA_TAG):
        return LEGACY_PATH
    return "/"


def _local_timezone() -> str:
    tz = os.environ.get("TZ")
    if tz:
        return tz
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            return target.split("zoneinfo/", 1)[1]
    return time.tzname[0]


def _filters(**kwargs: list[str]) -> str:
    # Docker API expects filters as JSON map[string][]string
    return json.dumps(kwargs)


class ContainerBackend(Backend):
    """Backend running the service and browsers in Docker containers."""

    name = "docker"

    def __init__(
        self,
        config: LifecycleConfig,
        *,
        docker: aiodocker.Docker,
        registry: RegistryClient,
        log: FilteringBoundLogger | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        super().__init__(config, log=log)
        self._docker = docker
        self._registry = registry
        self._cancel_event = cancel_event

    @classmethod
    async def create(
        cls,
        config: LifecycleConfig,
        *,
        docker: aiodocker.Docker | None = None,
        registry: RegistryClient | None = None,
        log: FilteringBoundLogger | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ContainerBackend:
        """Build the backend, taking ownership of ``docker`` and ``registry``.

        Raises:
            InitializationError: Docker client or registry unavailable
        """
        if docker is None:
            try:
                docker = aiodocker.Docker()
            except Exception as e:
                raise InitializationError(f"failed to init Docker client: {e}") from e

        if registry is None:
            registry = RegistryClient(config.registry_url, log=log)
        try:
            await registry.ping()
        except InitializationError:
            await registry.close()
            await docker.close()
            raise

        return cls(config, docker=docker, registry=registry, log=log, cancel_event=cancel_event)

    async def close(self) -> None:
        """Close the registry and docker clients."""
        try:
            await self._registry.close()
        finally:
            await self._docker.close()

    # Downloadable

    async def is_downloaded(self) -> bool:
        return bool(await self._service_image_tags())

    async def download(self) -> ResolvedArtifact:
        version = self._config.requested_version
        if version is None:
            version = await self._latest_service_version()

        ref = image_with_tag(SERVICE_IMAGE, version) if version else SERVICE_IMAGE
        if not await self._pull_image(ref):
            raise FetchError("failed to pull Selenoid image", details={"image": ref})
        return ResolvedArtifact(image=ref)

    async def _latest_service_version(self) -> str | None:
        tags = await self._fetch_tags(SERVICE_IMAGE)
        return tags[0] if tags else None

    async def _service_image_tags(self) -> list[str]:
        """Repository tags of every local service image."""
        try:
            images = await self._docker.images.list(filters=_filters(reference=[SERVICE_IMAGE]))
        except DockerError as e:
            self._log.warning("docker.images.list_failed", error=str(e))
            return []
        return [tag for image in images for tag in image.get("RepoTags") or []]

    async def _has_image(self, ref: str) -> bool:
        try:
            images = await self._docker.images.list(filters=_filters(reference=[ref]))
        except DockerError:
            return False
        return bool(images)

    # Configurable

    async def configure(self) -> ServiceConfig:
        cfg = ServiceConfig()
        for browser in self._selected_browsers(list(SUPPORTED_BROWSERS)):
            image = SUPPORTED_BROWSERS[browser]
            self._log.info("docker.browser", browser=browser)

            tags = await self._fetch_tags(image)
            if self._config.download:
                tags = await self._pull_images(image, tags)
            else:
                tags = limit(tags, self._config.last_versions)

            if tags:
                cfg.add(browser, self._create_versions(browser, image, tags))
            else:
                self._log.warning("docker.browser.no_versions", browser=browser)

        self._write_config(cfg)
        return cfg

    async def _fetch_tags(self, image: str) -> list[str]:
        """Tags of ``image`` newest first, without ``latest``; [] on failure."""
        self._log.info("docker.tags", image=image)
        try:
            tags = await self._registry.tags(image)
        except FetchError as e:
            self._log.warning("docker.tags.failed", image=image, error=e.message)
            return []
        return sort_tags(tags)

    def _create_versions(self, browser: str, image: str, tags: list[str]) -> BrowserVersions:
        tmpfs = None
        if self._config.tmpfs > 0:
            tmpfs = {"/tmp": f"size={self._config.tmpfs}m"}

        versions = BrowserVersions(default=tags[0])
        for tag in tags:
            versions.versions[tag] = BrowserEntry(
                image=image_with_tag(image, tag),
                path=browser_path(browser, tag),
                tmpfs=tmpfs,
            )
        return versions

    async def _pull_images(self, image: str, tags: list[str]) -> list[str]:
        """Pull tags in order until ``last_versions`` succeeded; return those."""
        pulled: list[str] = []
        for tag in tags:
            ref = image_with_tag(image, tag)
            if not await self._ensure_image(ref):
                continue
            pulled.append(tag)
            if len(pulled) == self._config.last_versions:
                break
        return pulled

    async def _ensure_image(self, ref: str) -> bool:
        if not self._config.pull and await self._has_image(ref):
            self._log.info("docker.pull.present", image=ref)
            return True
        return await self._pull_image(ref)

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def _pull_image(self, ref: str) -> bool:
        """Pull ``ref``; False when it failed or was cancelled."""
        self._log.info("docker.pull", image=ref)
        previous = None
        try:
            async with aclosing(self._docker.images.pull(ref, stream=True)) as records:
                async for record in records:
                    if self._cancelled():
                        self._log.warning("docker.pull.interrupted", image=ref)
                        return False
                    if "error" in record:
                        self._log.warning("docker.pull.failed", image=ref, error=record["error"])
                        return False
                    status = record.get("status")
                    if status and status != previous:
                        previous = status
                        self._log.info("docker.pull.status", status=status, id=record.get("id"))
        except (DockerError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._log.warning("docker.pull.failed", image=ref, error=str(e) or type(e).__name__)
            return False
        return True

    # Runnable

    async def is_running(self) -> bool:
        return await self._get_service_container() is not None

    async def _get_service_container(self) -> Any | None:
        try:
            containers = await self._docker.containers.list(
                filters=_filters(name=[SERVICE_CONTAINER_NAME])
            )
        except DockerError as e:
            self._log.warning("docker.containers.list_failed", error=str(e))
            return None
        for container in containers:
            for port in container["Ports"] or []:
                if port.get("PrivatePort") == SERVICE_PORT:
                    return container
        return None

    def _pick_image_ref(self, repo_tags: list[str]) -> str:
        version = self._config.requested_version
        if version is not None:
            wanted = image_with_tag(SERVICE_IMAGE, version)
            if wanted in repo_tags:
                return wanted
        prefix = f"{SERVICE_IMAGE}:"
        tags = sort_tags(t[len(prefix):] for t in repo_tags if t.startswith(prefix))
        if tags:
            return image_with_tag(SERVICE_IMAGE, tags[0])
        return repo_tags[0]

    async def start(self) -> None:
        repo_tags = await self._service_image_tags()
        if not repo_tags:
            raise InvariantViolationError(
                "Selenoid image is not downloaded: this is probably a bug"
            )
        ref = self._pick_image_ref(repo_tags)

        expose_key = f"{SERVICE_PORT}/tcp"
        config: dict[str, Any] = {
            "Hostname": "localhost",
            "Image": ref,
            "Env": [f"TZ={_local_timezone()}"],
            "ExposedPorts": {expose_key: {}},
            "HostConfig": {
                "AutoRemove": True,
                # empty HostPort -> docker picks an ephemeral port
                "PortBindings": {expose_key: [{"HostIp": "0.0.0.0", "HostPort": ""}]},
                "Binds": [
                    f"{self._config.output_dir.resolve()}:{CONTAINER_CONFIG_DIR}:ro",
                    f"{DOCKER_SOCKET}:{DOCKER_SOCKET}",
                ],
            },
        }

        self._log.info("docker.create", image=ref, name=SERVICE_CONTAINER_NAME)
        try:
            container = await self._docker.containers.create(
                config=config,
                name=SERVICE_CONTAINER_NAME,
            )
        except DockerError as e:
            raise StartError(f"failed to create container: {e}") from e

        try:
            await container.start()
        except DockerError as e:
            await self._remove_container(container.id)
            raise StartError(f"failed to start container: {e}") from e
        self._log.info("docker.started", container_id=container.id)

    async def _remove_container(self, container_id: str) -> None:
        """Best-effort removal of a container that failed to start."""
        try:
            container = self._docker.containers.container(container_id)
            await container.delete(force=True, v=True)
        except DockerError as e:
            self._log.warning("docker.remove_failed", container_id=container_id, error=str(e))

    async def stop(self) -> None:
        container = await self._get_service_container()
        if container is None:
            return
        self._log.info("docker.remove", container_id=container.id)
        try:
            await container.delete(force=True, v=True)
        except DockerError as e:
            if e.status == 404:
                self._log.warning("docker.remove.not_found", container_id=container.id)
            else:
                raise StopError(f"failed to remove container: {e}") from e
