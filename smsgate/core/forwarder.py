"""Relays inbound provider messages to the configured webhook."""
from __future__ import annotations

import mimetypes
import time
from typing import Any

import httpx

from smsgate.domain.errors import ForwardingError
from smsgate.domain.models import InboundMessage
from smsgate.observability.logging import get_logger
from smsgate.observability import metrics

log = get_logger("forwarder")


def extension_for(mime_type: str) -> str:
    """First extension registered for ``mime_type``, without the dot."""
    ext = mimetypes.guess_extension(mime_type.split(";", 1)[0].strip())
    if not ext:
        raise ForwardingError(f"no file extension registered for {mime_type!r}")
    return ext.lstrip(".")


async def build_parts(message: InboundMessage) -> list[tuple[str, tuple[Any, ...]]]:
    """Multipart parts in wire order: attachments first, then source and message.

    Every attachment is read in full here; provider streams are not valid
    once the handler returns.
    """
    parts: list[tuple[str, tuple[Any, ...]]] = []
    for i, attachment in enumerate(message.attachments, start=1):
        filename = f"attachments{i}.{extension_for(attachment.mime_type)}"
        data = await attachment.read()
        parts.append(("attachments", (filename, data, attachment.mime_type)))
    # a None filename renders a plain form field
    parts.append(("source", (None, message.source)))
    parts.append(("message", (None, message.text)))
    return parts


class WebhookForwarder:
    """Inbound handler registered with the provider.

    Reentrant: each call builds its own body; only the URL and the pooled
    HTTP client are shared. Failures are logged and the message is dropped.
    """

    def __init__(self, url: str | None, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        self.url = url or None
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __call__(self, message: InboundMessage) -> None:
        if not self.url:
            return
        started = time.perf_counter()
        try:
            parts = await build_parts(message)
            resp = await self._client.post(self.url, files=parts)
            await resp.aclose()
        except Exception as e:
            metrics.webhook_forwards.labels(result="error").inc()
            log.warning(
                "webhook_forward_failed",
                source=message.source,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        metrics.webhook_forwards.labels(result="ok").inc()
        metrics.webhook_latency.observe(time.perf_counter() - started)
        log.info(
            "webhook_forwarded",
            source=message.source,
            attachments=len(message.attachments),
            status=resp.status_code,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
