from __future__ import annotations
from smsgate.providers.base import Provider
from smsgate.observability.logging import get_logger

log = get_logger("provider.console")

class ConsoleProvider(Provider):
    """Text-only provider that logs outbound messages.

    Receives nothing and has no attachment support, so multipart sends
    against it are answered with 403.
    """
    async def setup(self) -> None:
        log.info("console_provider_ready")

    async def shutdown(self) -> None:
        log.info("console_provider_stopped")

    async def send_message(self, contact: str, text: str) -> None:
        log.info("console_send", contact=contact, text=text)
