from __future__ import annotations
import abc
from typing import Awaitable, Callable
from smsgate.domain.models import InboundMessage, OutboundAttachment, ProviderStatus

InboundHandler = Callable[[InboundMessage], Awaitable[None]]

class Provider(abc.ABC):
    """Messaging backend interface.

    Providers are pure async and are shared by every request handler, so
    implementations must tolerate concurrent sends. Inbound messages are
    pushed to the handler registered with `on_message`, one call per message.
    `status` is driven by the lifecycle coordinator, not by the provider.
    """
    def __init__(self):
        self.status = ProviderStatus.offline
        self._handler: InboundHandler | None = None

    @property
    def ready(self) -> bool:
        return self.status is ProviderStatus.ready

    def on_message(self, handler: InboundHandler) -> None:
        self._handler = handler

    async def deliver(self, message: InboundMessage) -> None:
        if self._handler is None:
            return
        await self._handler(message)

    @abc.abstractmethod
    async def setup(self) -> None:
        ...

    @abc.abstractmethod
    async def shutdown(self) -> None:
        ...

    @abc.abstractmethod
    async def send_message(self, contact: str, text: str) -> None:
        ...

    def abort(self) -> None:
        """Drop process-local resources after a fatal startup error.

        Called instead of `shutdown`: no network teardown, no awaiting.
        """

class AttachmentProvider(abc.ABC):
    """Optional capability: binary attachments."""

    @abc.abstractmethod
    async def send_attachment(self, contact: str, text: str, attachment: OutboundAttachment) -> None:
        ...

class RegistrationProvider(abc.ABC):
    """Optional capability: account registration confirmed by a verification code."""

    @abc.abstractmethod
    def set_verification_code(self, code: str) -> None:
        ...

def supports_attachments(provider: Provider) -> bool:
    return isinstance(provider, AttachmentProvider)

def supports_registration(provider: Provider) -> bool:
    return isinstance(provider, RegistrationProvider)
