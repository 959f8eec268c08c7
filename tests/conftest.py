import asyncio
import pytest
from smsgate.config import Settings
from smsgate.domain.errors import DeliveryError
from smsgate.domain.models import ProviderStatus
from smsgate.providers.base import AttachmentProvider, Provider, RegistrationProvider


class FakeProvider(Provider):
    """Text-only provider that records calls."""

    def __init__(self, fail: bool = False, events: list | None = None):
        super().__init__()
        self.status = ProviderStatus.ready
        self.fail = fail
        self.events = events if events is not None else []
        self.sent: list[tuple[str, str]] = []
        self.setup_calls = 0
        self.shutdown_calls = 0
        self.abort_calls = 0

    async def setup(self) -> None:
        self.setup_calls += 1
        self.events.append("setup")

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self.events.append("shutdown")

    def abort(self) -> None:
        self.abort_calls += 1
        self.events.append("abort")

    async def send_message(self, contact: str, text: str) -> None:
        if self.fail:
            raise DeliveryError("rejected by backend")
        self.sent.append((contact, text))


class FakeAttachmentProvider(FakeProvider, AttachmentProvider):
    def __init__(self, fail: bool = False):
        super().__init__(fail=fail)
        self.attachments: list[dict] = []
        self.streams: list = []

    async def send_attachment(self, contact, text, attachment) -> None:
        self.streams.append(attachment.stream)
        if self.fail:
            raise DeliveryError("attachment rejected")
        self.attachments.append({
            "contact": contact,
            "text": text,
            "filename": attachment.filename,
            "content_type": attachment.content_type,
            "data": attachment.stream.read(),
        })


class FakeRegistrationProvider(FakeProvider, RegistrationProvider):
    """Setup blocks until a verification code arrives, like a real registration."""

    def __init__(self):
        super().__init__()
        self.code: str | None = None
        self._code_set = asyncio.Event()

    def set_verification_code(self, code: str) -> None:
        self.code = code
        self._code_set.set()

    async def setup(self) -> None:
        await self._code_set.wait()
        await super().setup()


@pytest.fixture
def settings():
    return Settings(_env_file=None, provider="console")


class FakeServer:
    """Stands in for uvicorn.Server: serves until should_exit, optionally ignoring it."""

    def __init__(self, events: list, *, bind_fails: bool = False, exits_early: bool = False, hangs: bool = False):
        self.events = events
        self.bind_fails = bind_fails
        self.exits_early = exits_early
        self.hangs = hangs
        self.should_exit = False
        self.force_exit = False

    async def serve(self) -> None:
        if self.bind_fails:
            raise SystemExit(1)
        self.events.append("serving")
        if self.exits_early:
            return
        while not self.should_exit:
            await asyncio.sleep(0.005)
        while self.hangs and not self.force_exit:
            await asyncio.sleep(0.005)
        self.events.append("server_stopped")


async def wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)
