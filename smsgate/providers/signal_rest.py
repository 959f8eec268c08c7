from __future__ import annotations
import asyncio, base64, contextlib, os
import fcntl  # POSIX only
from typing import IO, Any
import httpx
from smsgate.config import Settings
from smsgate.core.retry import TransientError, retry_async
from smsgate.domain.errors import ConfigError, DeliveryError, ProviderSetupError
from smsgate.domain.models import InboundAttachment, InboundMessage, OutboundAttachment
from smsgate.observability.logging import get_logger
from smsgate.observability import metrics
from smsgate.providers.base import AttachmentProvider, Provider, RegistrationProvider

log = get_logger("provider.signal")

class SignalAttachment(InboundAttachment):
    """Attachment stored by the daemon, downloaded on first read."""
    def __init__(self, client: httpx.AsyncClient, attachment_id: str, mime_type: str):
        self._client = client
        self.attachment_id = attachment_id
        self.mime_type = mime_type

    async def read(self) -> bytes:
        resp = await self._client.get(f"/v1/attachments/{self.attachment_id}")
        resp.raise_for_status()
        return resp.content

class SignalRestProvider(Provider, AttachmentProvider, RegistrationProvider):
    """Signal backend driven through a signal-cli REST daemon.

    Outbound: POST /v2/send, attachments inlined as base64 data URIs.
    Inbound: polls GET /v1/receive/{number} and hands every data message to
    the registered handler in its own task, so slow webhooks don't hold up
    the poll loop.
    Registration: POST /v1/register/{number}, then blocks until
    `set_verification_code` is called and confirms with
    POST /v1/register/{number}/verify/{code}.
    """
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        super().__init__()
        self.phone = settings.phone
        self.register_account = settings.register_account
        self.storage_dir = settings.storage_dir
        self.poll_interval = settings.receive_interval_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=settings.signal_api_url, timeout=30.0)
        self._code: str | None = None
        self._code_set = asyncio.Event()
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._lock: IO[str] | None = None

    def set_verification_code(self, code: str) -> None:
        self._code = code
        self._code_set.set()

    def _phone_number(self) -> str:
        if not self.phone:
            raise ConfigError("phone number must be provided")
        if not self.phone.startswith("+"):
            raise ConfigError("phone number must be in international format +{countrycode}{number}")
        return self.phone

    async def setup(self) -> None:
        number = self._phone_number()
        self._acquire_lock()
        try:
            if self.register_account:
                await self._register(number)
        except BaseException:
            self._release_lock()
            raise
        self._stop.clear()
        self._task = asyncio.create_task(self._receive_loop(number), name="signal-receive")
        log.info("signal_provider_ready", number=number)

    async def shutdown(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        # in-flight forwards still need the client to download attachments
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()
        self._release_lock()
        log.info("signal_provider_stopped")

    def abort(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
        self._release_lock()

    async def send_message(self, contact: str, text: str) -> None:
        await self._send({"message": text, "number": self.phone, "recipients": [contact]})

    async def send_attachment(self, contact: str, text: str, attachment: OutboundAttachment) -> None:
        data = base64.b64encode(attachment.stream.read()).decode("ascii")
        uri = f"data:{attachment.content_type};filename={attachment.filename};base64,{data}"
        await self._send({
            "message": text,
            "number": self.phone,
            "recipients": [contact],
            "base64_attachments": [uri],
        })

    async def _send(self, payload: dict[str, Any]) -> None:
        try:
            resp = await self._client.post("/v2/send", json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f"signal daemon unreachable: {e}") from e
        if resp.is_error:
            raise DeliveryError(f"signal daemon rejected send: {resp.status_code} {resp.text}")

    async def _register(self, number: str) -> None:
        try:
            resp = await self._client.post(f"/v1/register/{number}", json={"use_voice": False})
            if resp.is_error:
                raise ProviderSetupError(f"registration failed: {resp.status_code} {resp.text}")
            log.info("signal_registration_pending", number=number)
            await self._code_set.wait()
            code = (self._code or "").replace("-", "")
            resp = await self._client.post(f"/v1/register/{number}/verify/{code}")
            if resp.is_error:
                raise ProviderSetupError(f"verification failed: {resp.status_code} {resp.text}")
        except httpx.HTTPError as e:
            raise ProviderSetupError(f"signal daemon unreachable: {e}") from e
        log.info("signal_registered", number=number)

    async def _receive(self, number: str) -> list[dict[str, Any]]:
        resp = await self._client.get(f"/v1/receive/{number}")
        if resp.status_code >= 500:
            raise TransientError(f"receive returned {resp.status_code}")
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    async def _receive_loop(self, number: str) -> None:
        while not self._stop.is_set():
            try:
                items = await retry_async(self._receive, number)
            except (httpx.HTTPError, TransientError, ValueError) as e:
                log.warning("signal_receive_failed", error=str(e))
                items = []
            for item in items:
                msg = self._to_message(item)
                if msg is None:
                    continue
                metrics.inbound_messages.inc()
                task = asyncio.create_task(self._dispatch_inbound(msg))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _dispatch_inbound(self, msg: InboundMessage) -> None:
        try:
            await self.deliver(msg)
        except Exception:
            log.exception("inbound_handler_failed", source=msg.source)

    def _to_message(self, item: dict[str, Any]) -> InboundMessage | None:
        envelope = item.get("envelope") or {}
        data = envelope.get("dataMessage")
        # receipts and typing notifications carry no dataMessage
        if not data:
            return None
        attachments: list[InboundAttachment] = [
            SignalAttachment(self._client, a["id"], a.get("contentType") or "application/octet-stream")
            for a in data.get("attachments") or []
            if a.get("id")
        ]
        return InboundMessage(
            source=envelope.get("sourceNumber") or envelope.get("source") or "",
            text=data.get("message") or "",
            attachments=attachments,
        )

    def _acquire_lock(self) -> None:
        # one gateway per account, otherwise two pollers split the inbound queue.
        # the kernel drops the flock when the process dies; the file itself may stay.
        os.makedirs(self.storage_dir, exist_ok=True)
        path = os.path.join(self.storage_dir, "smsgate.lock")
        f = open(path, "a+", encoding="utf-8")
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            f.close()
            raise ProviderSetupError(f"Instance lock held at {path}. Another gateway may be running.") from e
        f.seek(0)
        f.truncate()
        f.write(self.phone)
        f.flush()
        self._lock = f

    def _release_lock(self) -> None:
        if self._lock is None:
            return
        fcntl.flock(self._lock.fileno(), fcntl.LOCK_UN)
        self._lock.close()
        self._lock = None
