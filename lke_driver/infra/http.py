"""JSON-over-HTTP transport used by the Linode client.

HttpClient owns one lazily created aiohttp session. Every answer with a
status >= 400 becomes HttpError, and so does a request that never got an
answer (status 0), so callers handle a single exception type.
"""

from __future__ import annotations

import json as jsonlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp
from loguru import logger

# ─── Errors ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    status: int
    body: str
    retry_after: float | None = None

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.body}"


def _retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


# ─── Auth ────────────────────────────────────────────────────────────


class Auth(Protocol):
    def headers(self) -> dict[str, str]: ...


@dataclass(frozen=True, slots=True)
class BearerAuth:
    token: str = field(repr=False)

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


# ─── Client ──────────────────────────────────────────────────────────


class HttpClient:
    """Send JSON requests relative to ``base_url`` and decode JSON answers."""

    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        timeout: float = 30,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one request; return the decoded body, or None when it is empty.

        Raises:
            HttpError: Status >= 400 (with ``retry_after`` when the server sent
                one), or status 0 when no response was received.
        """
        headers = dict(self._headers)
        if self._auth is not None:
            headers.update(self._auth.headers())
        url = f"{self.base_url}{path}"

        try:
            async with self.session.request(
                method, url, headers=headers, json=json, params=params
            ) as resp:
                body = await resp.text()
                if resp.status >= 400:
                    self._log.debug(
                        "{method} {path} -> {status}: {body}",
                        method=method, path=path, status=resp.status, body=body[:500],
                    )
                    raise HttpError(
                        resp.status, body, _retry_after(resp.headers.get("Retry-After"))
                    )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise HttpError(0, str(e) or type(e).__name__) from e

        return jsonlib.loads(body) if body.strip() else None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
