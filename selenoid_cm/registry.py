"""Docker Registry HTTP API v2 client (tag listing only).

Anonymous access is supported for registries that answer with a Bearer
token challenge (Docker Hub does):

    GET /v2/<repo>/tags/list            -> 401, WWW-Authenticate: Bearer realm=...,scope=...
    GET <realm>?service=...&scope=...   -> {"token": "..."}
    GET /v2/<repo>/tags/list (+ token)  -> {"name": "<repo>", "tags": [...]}
"""

from __future__ import annotations

import re

import httpx
import structlog
from structlog.typing import FilteringBoundLogger

from selenoid_cm.errors import FetchError, InitializationError

logger = structlog.get_logger()

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> dict[str, str] | None:
    """Parse a ``WWW-Authenticate: Bearer ...`` header into its parameters."""
    scheme, _, params = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return dict(_CHALLENGE_PARAM_RE.findall(params))


class RegistryClient:
    """Lists image tags of a Docker registry."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        log: FilteringBoundLogger | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )
        self._log = (log or logger).bind(registry=self._url)

    @property
    def url(self) -> str:
        return self._url

    async def close(self) -> None:
        await self._client.aclose()

    async def ping(self) -> None:
        """Check the registry answers on /v2/.

        Raises:
            InitializationError: If the registry is unreachable
        """
        try:
            response = await self._client.get(f"{self._url}/v2/")
        except httpx.HTTPError as e:
            raise InitializationError(f"Docker Registry is not available: {e}") from e
        # 401 means the API is there and wants a token
        if response.status_code not in (200, 401):
            raise InitializationError(
                f"Docker Registry is not available: HTTP {response.status_code}",
                details={"registry": self._url},
            )

    async def tags(self, repository: str) -> list[str]:
        """Return all tags of ``repository`` in registry order.

        Raises:
            FetchError: On transport errors or unexpected responses
        """
        tags: list[str] = []
        url: str | None = f"{self._url}/v2/{repository}/tags/list"
        token: str | None = None

        while url is not None:
            response = await self._get(url, token)
            if response.status_code == 401 and token is None:
                token = await self._fetch_token(response)
                if token:
                    response = await self._get(url, token)
            if response.status_code != 200:
                raise FetchError(
                    f"failed to fetch tags for image \"{repository}\": HTTP {response.status_code}",
                    details={"repository": repository, "status_code": response.status_code},
                )
            try:
                payload = response.json()
            except ValueError as e:
                raise FetchError(f"invalid tags response for \"{repository}\"") from e

            tags.extend(payload.get("tags") or [])
            next_link = response.links.get("next", {}).get("url")
            url = str(response.url.join(next_link)) if next_link else None

        self._log.debug("registry.tags", repository=repository, count=len(tags))
        return tags

    async def _get(self, url: str, token: str | None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            return await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(f"registry request failed: {e}", details={"url": url}) from e

    async def _fetch_token(self, response: httpx.Response) -> str | None:
        challenge = parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if not challenge or "realm" not in challenge:
            return None

        params = {k: v for k, v in challenge.items() if k in ("service", "scope")}
        try:
            token_response = await self._client.get(challenge["realm"], params=params)
        except httpx.HTTPError as e:
            raise FetchError(f"registry token request failed: {e}") from e
        if token_response.status_code != 200:
            raise FetchError(
                f"registry token request failed: HTTP {token_response.status_code}"
            )
        body = token_response.json()
        return body.get("token") or body.get("access_token")
