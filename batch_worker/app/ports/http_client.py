"""HTTP client port: deliver a message payload to a downstream endpoint.

Handlers depend on this port; infrastructure (httpx) implements it. Keeps the
application layer free of transport imports.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class HttpClientError(Exception):
    """Base for HTTP client failures (status, network, etc.)."""


class HttpClientTimeoutError(HttpClientError):
    """Raised when the request times out."""


class HttpClientStatusError(HttpClientError):
    """Raised when the endpoint answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"http status {status_code} for {url}")
        self.status_code = status_code
        self.url = url


@dataclass(frozen=True)
class RequestTimeout:
    """Connect and read timeouts in seconds."""

    connect_seconds: float
    read_seconds: float


@dataclass(frozen=True)
class DeliveryReceipt:
    """What the endpoint answered for an accepted delivery."""

    status_code: int
    url: str
    elapsed_seconds: float


@runtime_checkable
class AbstractHttpClient(Protocol):
    async def deliver(
        self,
        url: str,
        *,
        content: bytes,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> DeliveryReceipt:
        """POST content to url.

        Raises HttpClientTimeoutError on timeout, HttpClientStatusError on a non-2xx
        answer and HttpClientError on any other transport failure.
        """
        ...

    async def close(self) -> None:
        ...
