from __future__ import annotations
import asyncio, mimetypes, os
from typing import Optional
import typer
import httpx
from pydantic import ValidationError as SettingsValidationError
from rich import print
from rich.table import Table
from smsgate.config import Settings, load_settings
from smsgate.core.forwarder import WebhookForwarder
from smsgate.core.lifecycle import Lifecycle, make_server
from smsgate.domain.errors import FatalStartupError
from smsgate.observability.logging import configure_logging, get_logger
from smsgate.providers.base import Provider
from smsgate.providers.console import ConsoleProvider
from smsgate.providers.signal_rest import SignalRestProvider
from smsgate.server.app import create_app

app = typer.Typer(help="smsgate - HTTP gateway for sending and receiving messages through a messaging provider.")
log = get_logger("cli")

CODE_LENGTH = 7

def check_verification_code(text: str) -> str | None:
    """Return the reason a verification code is rejected, or None if it is usable."""
    if text == "":
        return "Code can't be empty"
    if len(text) != CODE_LENGTH:
        return "Code must be in format 000-000"
    return None

def prompt_verification_code() -> str:
    while True:
        text = typer.prompt("Enter Code", default="", show_default=False).strip()
        problem = check_verification_code(text)
        if problem is None:
            return text
        print(problem)

def create_provider(settings: Settings) -> Provider:
    if settings.provider == "console":
        log.info("provider_selected", provider="console")
        return ConsoleProvider()
    log.info("provider_selected", provider="signal", api=settings.signal_api_url)
    return SignalRestProvider(settings)

async def _serve(settings: Settings) -> None:
    provider = create_provider(settings)
    forwarder = WebhookForwarder(settings.webhook_url, timeout=settings.webhook_timeout_s)
    provider.on_message(forwarder)
    server = make_server(create_app(settings, provider), settings.host, settings.port, settings.shutdown_grace_s)
    lifecycle = Lifecycle(
        provider,
        server,
        grace_s=settings.shutdown_grace_s,
        register=settings.register_account,
        code_reader=prompt_verification_code,
    )
    try:
        await lifecycle.run()
    finally:
        await forwarder.aclose()

@app.command()
def serve(
    phone: Optional[str] = typer.Option(None, help="Phone number to use, +{countrycode}{number}."),
    register: bool = typer.Option(False, "--register", help="Register and wait for a verification code."),
    host: Optional[str] = typer.Option(None),
    port: Optional[int] = typer.Option(None),
    webhook: Optional[str] = typer.Option(None, help="Webhook that receives incoming messages."),
    provider: Optional[str] = typer.Option(None, help="signal|console"),
    storage_dir: Optional[str] = typer.Option(None),
):
    """Run the gateway until interrupted."""
    try:
        settings = load_settings(
            phone=phone,
            register_account=register or None,
            host=host,
            port=port,
            webhook_url=webhook,
            provider=provider,
            storage_dir=storage_dir,
        )
    except SettingsValidationError as e:
        print(f"[red]invalid configuration[/red]\n{e}")
        raise typer.Exit(code=2)
    configure_logging(settings.log_level, settings.json_logs)
    log.info("gateway_starting", host=settings.host, port=settings.port, provider=settings.provider,
             webhook=bool(settings.webhook_url))
    try:
        asyncio.run(_serve(settings))
    except FatalStartupError as e:
        log.critical("gateway_aborted", error=str(e))
        raise typer.Exit(code=1)

@app.command()
def send(
    contact: str,
    message: str = typer.Option("", "--message", "-m"),
    attachment: Optional[str] = typer.Option(None, help="Path of a file to attach."),
    url: str = typer.Option("http://127.0.0.1:8080/signal", envvar="SMSGATE_URL"),
    timeout: float = 30.0,
):
    """Send a message through a running gateway."""
    data = {"contact": contact, "message": message}
    try:
        if attachment:
            content_type = mimetypes.guess_type(attachment)[0] or "application/octet-stream"
            with open(attachment, "rb") as f:
                files = {"attachment": (os.path.basename(attachment), f, content_type)}
                resp = httpx.post(url, data=data, files=files, timeout=timeout)
        else:
            resp = httpx.post(url, data=data, timeout=timeout)
    except (OSError, httpx.HTTPError) as e:
        print(f"[red]request failed:[/red] {e}")
        raise typer.Exit(code=1)
    try:
        body = resp.json()
    except ValueError:
        body = {"code": resp.status_code, "msg": resp.text}
    t = Table(title="Gateway response")
    t.add_column("code"); t.add_column("msg")
    t.add_row(str(body.get("code")), str(body.get("msg")))
    print(t)
    if resp.status_code != 200:
        raise typer.Exit(code=1)

def main():
    """Entry point for the CLI."""
    app()
