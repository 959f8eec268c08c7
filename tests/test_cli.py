import httpx
import pytest
from typer.testing import CliRunner
from smsgate import cli
from smsgate.config import Settings
from smsgate.providers.console import ConsoleProvider
from smsgate.providers.signal_rest import SignalRestProvider

runner = CliRunner()


@pytest.mark.parametrize("text,problem", [
    ("", "Code can't be empty"),
    ("123", "Code must be in format 000-000"),
    ("123-4567", "Code must be in format 000-000"),
    ("123-456", None),
])
def test_check_verification_code(text, problem):
    assert cli.check_verification_code(text) == problem


def test_prompt_repeats_until_code_is_valid(monkeypatch):
    answers = iter(["", "12", "  123-456 "])
    monkeypatch.setattr(cli.typer, "prompt", lambda *a, **k: next(answers))
    assert cli.prompt_verification_code() == "123-456"


def test_create_provider():
    assert isinstance(cli.create_provider(Settings(_env_file=None, provider="console")), ConsoleProvider)


@pytest.mark.asyncio
async def test_create_signal_provider():
    provider = cli.create_provider(Settings(_env_file=None, provider="signal", phone="+15550000"))
    assert isinstance(provider, SignalRestProvider)


def test_send_command(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return httpx.Response(200, json={"code": 200, "msg": "Message Sent"})

    monkeypatch.setattr(cli.httpx, "post", fake_post)
    result = runner.invoke(cli.app, ["send", "+15550001", "-m", "hello", "--url", "http://gw.test/signal"])
    assert result.exit_code == 0
    assert "Message Sent" in result.output
    assert calls[0][0] == "http://gw.test/signal"
    assert calls[0][1]["data"] == {"contact": "+15550001", "message": "hello"}


def test_send_command_with_attachment(monkeypatch, tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"PNG")
    calls = []

    def fake_post(url, **kwargs):
        name, f, content_type = kwargs["files"]["attachment"]
        calls.append((name, f.read(), content_type))
        return httpx.Response(500, json={"code": 500, "msg": "Unable to send Attachment"})

    monkeypatch.setattr(cli.httpx, "post", fake_post)
    result = runner.invoke(cli.app, ["send", "+15550001", "--attachment", str(path)])
    assert result.exit_code == 1
    assert calls == [("photo.png", b"PNG", "image/png")]


def test_serve_rejects_bad_phone():
    result = runner.invoke(cli.app, ["serve", "--phone", "15550000"])
    assert result.exit_code == 2
