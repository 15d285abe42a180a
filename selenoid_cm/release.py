"""Download of the Selenoid binary from GitHub releases."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import structlog
from structlog.typing import FilteringBoundLogger

from selenoid_cm.config import LifecycleConfig
from selenoid_cm.errors import FetchError, ReleaseNotFoundError
from selenoid_cm.fetch import fetch_to_file, new_client

logger = structlog.get_logger()

OWNER = "aerokube"
REPO = "selenoid"
BINARY_NAME = "selenoid"


class ReleaseDownloader:
    """Resolves a release asset for an OS/architecture and saves it."""

    def __init__(
        self,
        config: LifecycleConfig,
        *,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._base_url = config.github_base_url.rstrip("/")
        self._output_dir = config.output_dir
        self._os = config.os
        self._arch = config.arch
        self._version = config.requested_version
        self._log = (log or logger).bind(component="release")

    async def download(self) -> Path:
        """Download the binary to ``<output_dir>/selenoid``.

        Raises:
            ReleaseNotFoundError: Unknown release or no asset for this OS/arch
            FetchError: GitHub API or asset download failed
        """
        async with new_client(headers={"Accept": "application/vnd.github+json"}) as client:
            url = await self.asset_url(client)
            output_path = self._output_dir / BINARY_NAME
            self._log.info("release.download", url=url)
            await fetch_to_file(
                url,
                output_path,
                mode=0o755,
                client=client,
                headers={"Accept": "application/octet-stream"},
            )
        self._log.info("release.saved", path=str(output_path))
        return output_path

    async def asset_url(self, client: httpx.AsyncClient) -> str:
        release = await self._get_release(client)
        for asset in release.get("assets") or []:
            name = asset.get("name") or ""
            if self._os in name and self._arch in name:
                return asset["browser_download_url"]
        raise ReleaseNotFoundError(
            f"Selenoid binary for {self._os.title()} {self._arch} is not available "
            f"for specified release: {self._version or 'latest'}",
            details={"os": self._os, "arch": self._arch},
        )

    async def _get_release(self, client: httpx.AsyncClient) -> dict[str, Any]:
        if self._version is None:
            url = f"{self._base_url}/repos/{OWNER}/{REPO}/releases/latest"
        else:
            url = f"{self._base_url}/repos/{OWNER}/{REPO}/releases/tags/{self._version}"

        self._log.info("release.lookup", version=self._version or "latest")
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise FetchError(f"failed to get release information: {e}") from e

        if response.status_code == 404:
            raise ReleaseNotFoundError(f"unknown release: {self._version or 'latest'}")
        if response.status_code != 200:
            raise FetchError(
                f"failed to get release information: HTTP {response.status_code}",
                details={"url": url},
            )
        return response.json()
