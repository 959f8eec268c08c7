import json
import logging
import pytest
import structlog
from smsgate.observability.logging import configure_logging, get_logger


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def last_record(capsys) -> dict:
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_uvicorn_records_use_the_gateway_format(capsys, restore_logging):
    configure_logging("INFO", json_logs=True)
    logging.getLogger("uvicorn.error").info("Uvicorn running on %s", "http://127.0.0.1:8080")
    record = last_record(capsys)
    assert record["event"] == "Uvicorn running on http://127.0.0.1:8080"
    assert record["level"] == "info"
    assert record["logger"] == "uvicorn.error"
    assert "timestamp" in record


def test_gateway_events_render_as_json(capsys, restore_logging):
    configure_logging("INFO", json_logs=True)
    get_logger("lifecycle").info("shutdown_requested", grace_s=5.0)
    record = last_record(capsys)
    assert record["event"] == "shutdown_requested"
    assert record["grace_s"] == 5.0
    assert record["logger"] == "lifecycle"


def test_library_loggers_follow_the_configured_level(restore_logging):
    configure_logging("DEBUG", json_logs=False)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        assert logger.level == logging.DEBUG
        assert logger.propagate and not logger.handlers
    assert logging.getLogger("httpx").level == logging.WARNING
