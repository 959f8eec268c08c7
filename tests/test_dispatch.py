import pytest
from fastapi.testclient import TestClient
from conftest import FakeAttachmentProvider, FakeProvider
from smsgate.domain.models import APIResponse, ProviderStatus
from smsgate.server.app import create_app


def make_client(settings, provider):
    return TestClient(create_app(settings, provider))


def test_api_response_envelope():
    res = APIResponse(code=200, msg="Message Sent").to_response()
    assert res.status_code == 200
    assert res.body == b'{"code":200,"msg":"Message Sent"}'


@pytest.mark.parametrize("data", [
    {"message": "hi"},
    {"contact": "", "message": "hi"},
    {"contact": "+15550001"},
    {"contact": "+15550001", "message": ""},
])
def test_missing_fields_plain_form(settings, data):
    provider = FakeProvider()
    r = make_client(settings, provider).post("/signal", data=data)
    assert r.status_code == 400
    assert r.json() == {"code": 400, "msg": "Missing Required Fields"}
    assert provider.sent == []


def test_missing_contact_multipart(settings):
    provider = FakeAttachmentProvider()
    r = make_client(settings, provider).post(
        "/signal", data={"message": "hi"}, files={"attachment": ("a.png", b"PNG", "image/png")}
    )
    assert r.json() == {"code": 400, "msg": "Missing Required Fields"}
    assert provider.attachments == []


def test_json_body_is_not_a_form(settings):
    provider = FakeProvider()
    r = make_client(settings, provider).post("/signal", json={"contact": "+15550001", "message": "hi"})
    assert r.json() == {"code": 400, "msg": "Missing Required Fields"}


def test_message_sent(settings):
    provider = FakeProvider()
    r = make_client(settings, provider).post("/signal", data={"contact": "+15550001", "message": "hello"})
    assert r.status_code == 200
    assert r.json() == {"code": 200, "msg": "Message Sent"}
    assert provider.sent == [("+15550001", "hello")]


def test_fields_fall_back_to_query_string(settings):
    provider = FakeProvider()
    r = make_client(settings, provider).post("/signal?contact=%2B15550001&message=hello")
    assert r.json() == {"code": 200, "msg": "Message Sent"}
    assert provider.sent == [("+15550001", "hello")]


def test_message_delivery_failure(settings):
    provider = FakeProvider(fail=True)
    r = make_client(settings, provider).post("/signal", data={"contact": "+15550001", "message": "hello"})
    assert r.status_code == 500
    assert r.json() == {"code": 500, "msg": "Unable to send Message"}


def test_provider_not_ready(settings):
    provider = FakeProvider()
    provider.status = ProviderStatus.starting
    r = make_client(settings, provider).post("/signal", data={"contact": "+15550001", "message": "hello"})
    assert r.status_code == 503
    assert r.json() == {"code": 503, "msg": "Provider Not Ready"}
    assert provider.sent == []


def test_attachment_unsupported(settings):
    provider = FakeProvider()
    r = make_client(settings, provider).post(
        "/signal",
        data={"contact": "+15550001", "message": "look"},
        files={"attachment": ("a.png", b"PNG", "image/png")},
    )
    assert r.status_code == 403
    assert r.json() == {"code": 403, "msg": "Provider doesn't support attachments"}
    assert provider.sent == []


def test_attachment_sent_without_message(settings):
    provider = FakeAttachmentProvider()
    r = make_client(settings, provider).post(
        "/signal",
        data={"contact": "+15550001"},
        files={"attachment": ("photo.png", b"\x89PNG-bytes", "image/png")},
    )
    assert r.status_code == 200
    assert r.json() == {"code": 200, "msg": "Attachment Sent"}
    assert provider.attachments == [{
        "contact": "+15550001",
        "text": "",
        "filename": "photo.png",
        "content_type": "image/png",
        "data": b"\x89PNG-bytes",
    }]
    assert provider.sent == []
    assert provider.streams[0].closed


def test_attachment_field_missing(settings):
    provider = FakeAttachmentProvider()
    r = make_client(settings, provider).post(
        "/signal",
        data={"contact": "+15550001", "message": "look"},
        files={"document": ("a.txt", b"text", "text/plain")},
    )
    assert r.status_code == 500
    assert r.json() == {"code": 500, "msg": "Unable to send Attachment"}
    assert provider.streams == []


def test_attachment_delivery_failure_still_closes_upload(settings):
    provider = FakeAttachmentProvider(fail=True)
    r = make_client(settings, provider).post(
        "/signal",
        data={"contact": "+15550001", "message": "look"},
        files={"attachment": ("a.png", b"PNG", "image/png")},
    )
    assert r.json() == {"code": 500, "msg": "Unable to send Attachment"}
    assert len(provider.streams) == 1
    assert provider.streams[0].closed


def test_unknown_route_uses_envelope(settings):
    client = make_client(settings, FakeProvider())
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json() == {"code": 404, "msg": "Not Found"}
    r = client.get("/signal")
    assert r.status_code == 405
    assert r.json() == {"code": 405, "msg": "Method Not Allowed"}


def test_healthz_reports_provider_status(settings):
    provider = FakeProvider()
    client = make_client(settings, provider)
    assert client.get("/healthz").json()["ok"] is True
    provider.status = ProviderStatus.stopping
    body = client.get("/healthz").json()
    assert body["ok"] is False and body["provider"] == "stopping"


def test_metrics_endpoint(settings):
    client = make_client(settings, FakeProvider())
    client.post("/signal", data={"contact": "+15550001", "message": "hello"})
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "smsgate_outbound_requests_total" in r.text
