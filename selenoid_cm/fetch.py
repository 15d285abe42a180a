"""Plain HTTP downloads (manifest, driver archives, release binaries)."""

from __future__ import annotations

import os
from pathlib import Path

import httpx

from selenoid_cm.errors import FetchError

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=120.0, write=30.0, pool=10.0)


def new_client(**kwargs) -> httpx.AsyncClient:
    """Create an AsyncClient with the download defaults."""
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    kwargs.setdefault("follow_redirects", True)
    return httpx.AsyncClient(**kwargs)


async def fetch_bytes(url: str, *, client: httpx.AsyncClient | None = None) -> bytes:
    """GET ``url`` and return the body.

    Raises:
        FetchError: On transport errors and non-200 responses
    """
    if client is None:
        async with new_client() as owned:
            return await fetch_bytes(url, client=owned)

    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(f"file download error: {e}", details={"url": url}) from e

    if response.status_code != 200:
        raise FetchError(
            f"unexpected response code: {response.status_code}",
            details={"url": url, "status_code": response.status_code},
        )
    return response.content


async def fetch_to_file(
    url: str,
    output_path: Path,
    *,
    mode: int = 0o644,
    client: httpx.AsyncClient | None = None,
    headers: dict[str, str] | None = None,
) -> Path:
    """Stream ``url`` into ``output_path`` and apply ``mode``."""
    if client is None:
        async with new_client() as owned:
            return await fetch_to_file(
                url, output_path, mode=mode, client=owned, headers=headers
            )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        async with client.stream("GET", url, headers=headers) as response:
            if response.status_code != 200:
                raise FetchError(
                    f"unexpected response code: {response.status_code}",
                    details={"url": url, "status_code": response.status_code},
                )
            with open(output_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as e:
        raise FetchError(f"file download error: {e}", details={"url": url}) from e

    os.chmod(output_path, mode)
    return output_path
