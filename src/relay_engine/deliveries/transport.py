"""Outbound transports.

A transport is anything with ``async send(request) -> TransportResult``. It
must not raise for network trouble: timeouts and connection errors come back
as a result with ``error`` set and no status code.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx


@dataclass
class OutboundRequest:
    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0


@dataclass
class TransportResult:
    status_code: Optional[int] = None
    error: Optional[str] = None
    body_excerpt: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class Transport(Protocol):
    async def send(self, request: OutboundRequest) -> TransportResult: ...

    async def aclose(self) -> None: ...


class HttpTransport:
    """Webhook transport over ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient | None = None, excerpt_length: int = 500):
        self._client = client
        self._owns_client = client is None
        self.excerpt_length = excerpt_length

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=False)
        return self._client

    async def send(self, request: OutboundRequest) -> TransportResult:
        try:
            resp = await self._get_client().post(
                request.url,
                content=request.body,
                headers=request.headers,
                timeout=request.timeout,
            )
        except httpx.TimeoutException:
            return TransportResult(error="timeout")
        except httpx.InvalidURL as e:
            return TransportResult(error=f"InvalidURL: {e}")
        except httpx.HTTPError as e:
            return TransportResult(error=f"{type(e).__name__}: {e}")

        return TransportResult(
            status_code=resp.status_code,
            body_excerpt=resp.text[: self.excerpt_length],
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
