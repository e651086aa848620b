"""httpx implementation of the delivery port."""
from __future__ import annotations

import httpx

from batch_worker.app.ports.http_client import (
    AbstractHttpClient,
    DeliveryReceipt,
    HttpClientError,
    HttpClientStatusError,
    HttpClientTimeoutError,
    RequestTimeout,
)


def _to_httpx_timeout(timeout: RequestTimeout) -> httpx.Timeout:
    # write shares the read budget; waiting for a pooled connection counts as connecting
    return httpx.Timeout(
        connect=timeout.connect_seconds,
        read=timeout.read_seconds,
        write=timeout.read_seconds,
        pool=timeout.connect_seconds,
    )


class HttpxHttpClient(AbstractHttpClient):
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def deliver(
        self,
        url: str,
        *,
        content: bytes,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> DeliveryReceipt:
        try:
            response = await self._client.post(
                url,
                content=content,
                headers=headers or {},
                timeout=_to_httpx_timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise HttpClientTimeoutError(f"timeout while posting to {url}") from exc
        except httpx.HTTPError as exc:
            raise HttpClientError(f"http post failed for {url}: {exc}") from exc

        if not response.is_success:
            raise HttpClientStatusError(response.status_code, str(response.url))
        return DeliveryReceipt(
            status_code=response.status_code,
            url=str(response.url),
            elapsed_seconds=response.elapsed.total_seconds(),
        )

    async def close(self) -> None:
        await self._client.aclose()
