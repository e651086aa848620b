"""HTTP client factory: builds AbstractHttpClient from settings (no provider logic in composition)."""
from __future__ import annotations

import httpx

from batch_worker.app.config.settings import Settings
from batch_worker.app.ports.http_client import AbstractHttpClient
from batch_worker.app.infrastructure.http.httpx_client import HttpxHttpClient


def create_http_client(settings: Settings) -> AbstractHttpClient:
    """Build an HTTP client from settings. Timeouts are applied per-request by the adapter."""
    limits = httpx.Limits(max_connections=max(1, settings.max_concurrency) * 2)
    return HttpxHttpClient(httpx.AsyncClient(limits=limits))
