"""Concrete MessageHandler implementations."""
from __future__ import annotations

import json
from typing import Any

from loguru import logger

from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.errors import ProcessingError
from batch_worker.app.domain.models import Message
from batch_worker.app.ports.http_client import (
    AbstractHttpClient,
    HttpClientError,
    HttpClientTimeoutError,
    RequestTimeout,
)

ATTRIBUTE_HEADER_PREFIX = "X-Message-Attr-"


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class LoggingMessageHandler:
    """
    Logs each message: id at info, body and every attribute at debug.

    Bodies that look like JSON (leading '{' or '[') must parse; anything else is
    treated as plain text and accepted as-is.
    """

    async def handle(self, message: Message) -> None:
        try:
            text = message.body_text()
        except UnicodeDecodeError as exc:
            raise ProcessingError(f"body is not valid utf-8: {exc}") from exc

        _log("message_processing", message_id=message.message_id, receive_count=message.receive_count)
        logger.debug("message {} body: {}", message.message_id, text)
        for key, value in message.attributes.items():
            logger.debug("message {} attribute {}: {}", message.message_id, key, value)

        if text.lstrip().startswith(("{", "[")):
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ProcessingError(f"invalid json body: {exc}") from exc
            if isinstance(payload, dict) and "type" in payload:
                _log("message_type", message_id=message.message_id, message_type=str(payload["type"]))


class HttpForwardHandler:
    """Forwards the raw body to a downstream URL.

    The message id and attributes travel as headers. Timeouts, transport errors
    and non-2xx responses all surface as ProcessingError.
    """

    def __init__(
        self,
        client: AbstractHttpClient,
        url: str,
        connect_timeout_seconds: float,
        read_timeout_seconds: float,
        *,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        if not url:
            raise ValueError("forward url is required")
        self._client = client
        self._url = url
        self._timeout = RequestTimeout(
            connect_seconds=connect_timeout_seconds,
            read_seconds=read_timeout_seconds,
        )
        self._default_headers = dict(default_headers) if default_headers else {}

    def _headers_for(self, message: Message) -> dict[str, str]:
        headers = dict(self._default_headers)
        headers["X-Message-Id"] = message.message_id
        headers["X-Message-Receive-Count"] = str(message.receive_count)
        for key, value in message.attributes.items():
            headers[f"{ATTRIBUTE_HEADER_PREFIX}{key}"] = str(value)
        return headers

    async def handle(self, message: Message) -> None:
        body = message.body if isinstance(message.body, bytes) else message.body.encode()
        try:
            receipt = await self._client.deliver(
                self._url,
                content=body,
                timeout=self._timeout,
                headers=self._headers_for(message),
            )
        except HttpClientTimeoutError as exc:
            raise ProcessingError(f"forward timed out: {exc}") from exc
        except HttpClientError as exc:
            raise ProcessingError(f"forward failed: {exc}") from exc

        _log(
            "message_forwarded",
            message_id=message.message_id,
            status_code=receipt.status_code,
            elapsed_seconds=receipt.elapsed_seconds,
        )
