"""Drivers backend: native webdriver binaries instead of Docker.

Used when no Docker daemon answers. Drivers are described by an external
manifest (command template plus archive location per OS and architecture);
downloading happens as part of configuration, so there is no separate
artifact to download beforehand. Running the drivers is the service binary's
job, this backend never manages a process.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from selenoid_cm import archive
from selenoid_cm.backends.base import Backend
from selenoid_cm.config import LATEST
from selenoid_cm.errors import ArchiveError, FetchError
from selenoid_cm.fetch import fetch_bytes, new_client
from selenoid_cm.models import (
    BrowserEntry,
    BrowserManifest,
    BrowserVersions,
    DriverFile,
    ManifestBrowser,
    ServiceConfig,
)


class DriverBackend(Backend):
    """Backend resolving browser drivers from a manifest."""

    name = "drivers"

    # Downloadable (fused with configure)

    async def is_downloaded(self) -> bool:
        return await self.is_configured()

    async def download(self) -> None:
        self._log.info("drivers.download.deferred")
        return None

    # Configurable

    async def configure(self) -> ServiceConfig:
        output_dir = self._config.output_dir
        async with new_client() as client:
            manifest = await self._load_manifest(client)
            output_dir.mkdir(parents=True, exist_ok=True)

            cfg = ServiceConfig()
            for name in self._selected_browsers(list(manifest.root)):
                browser = manifest.root[name]
                driver = browser.driver_for(self._config.os, self._config.arch)
                if driver is None:
                    self._log.info(
                        "drivers.not_available",
                        browser=name,
                        os=self._config.os,
                        arch=self._config.arch,
                    )
                    continue

                self._log.info("drivers.browser", browser=name)
                try:
                    driver_path = await self._download_driver(client, driver, output_dir)
                except (FetchError, ArchiveError) as e:
                    self._log.warning("drivers.download_failed", browser=name, error=e.message)
                    continue

                try:
                    versions = self._create_versions(browser, driver_path)
                except (TypeError, ValueError):
                    self._log.warning("drivers.bad_command", browser=name, command=browser.command)
                    continue
                cfg.add(name, versions)

        self._write_config(cfg)
        return cfg

    async def _load_manifest(self, client) -> BrowserManifest:
        url = self._config.browsers_json_url
        self._log.info("drivers.manifest", url=url)
        data = await fetch_bytes(url, client=client)
        try:
            return BrowserManifest.model_validate_json(data)
        except ValidationError as e:
            raise FetchError(f"browsers data read error: {e}", details={"url": url}) from e

    async def _download_driver(self, client, driver: DriverFile, output_dir: Path) -> Path:
        if not self._config.download:
            return output_dir / driver.filename

        self._log.info("drivers.fetch", url=driver.url)
        data = await fetch_bytes(driver.url, client=client)
        return archive.extract(data, driver.filename, output_dir)

    def _create_versions(self, browser: ManifestBrowser, driver_path: Path) -> BrowserVersions:
        command = (browser.command % str(driver_path)).split()
        return BrowserVersions(
            default=LATEST,
            versions={LATEST: BrowserEntry(image=command)},
        )

    # Runnable: the service binary launches drivers itself

    async def is_running(self) -> bool:
        return False

    async def start(self) -> None:
        self._log.info("drivers.start.noop")

    async def stop(self) -> None:
        self._log.info("drivers.stop.noop")
