from __future__ import annotations
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
from smsgate.config import Settings
from smsgate.domain.models import APIResponse
from smsgate.providers.base import Provider
from smsgate.server.dispatch import dispatch_send, read_send_request
from smsgate.observability.logging import bind_request, get_logger
from smsgate.observability import metrics

log = get_logger("app")

VERSION = "0.1.0"

def create_app(settings: Settings, provider: Provider) -> FastAPI:
    """HTTP surface. Provider lifecycle is owned by the coordinator, not by the app."""
    app = FastAPI(title="smsgate", version=VERSION)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return APIResponse(code=exc.status_code, msg=str(exc.detail)).to_response()

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log.exception("unhandled_error", path=request.url.path, error=str(exc))
        return APIResponse(code=500, msg="Internal Server Error").to_response()

    @app.post(settings.send_path)
    async def send(request: Request) -> JSONResponse:
        bind_request(request.url.path, request.method)
        req = await read_send_request(request)
        res = await dispatch_send(provider, req)
        metrics.outbound_requests.labels(kind=req.kind, code=str(res.code)).inc()
        log.info("send_handled", kind=req.kind, code=res.code, msg=res.message)
        return res.to_response()

    @app.get(settings.health_path)
    async def healthz():
        return {"ok": provider.ready, "service": "smsgate", "version": VERSION, "provider": provider.status.value}

    @app.get(settings.metrics_path)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app
