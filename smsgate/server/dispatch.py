"""Outbound dispatch: one HTTP send request -> one provider call -> one APIResponse."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from smsgate.domain.errors import (
    CapabilityUnsupportedError,
    DeliveryError,
    ProviderNotReadyError,
    UploadExtractionError,
    ValidationError,
)
from smsgate.domain.models import APIResponse, OutboundAttachment
from smsgate.observability.logging import get_logger
from smsgate.providers.base import Provider, supports_attachments

log = get_logger("dispatch")

MULTIPART = "multipart/form-data"

MISSING_FIELDS = "Missing Required Fields"
NOT_READY = "Provider Not Ready"
ATTACHMENTS_UNSUPPORTED = "Provider doesn't support attachments"
ATTACHMENT_FAILED = "Unable to send Attachment"
ATTACHMENT_SENT = "Attachment Sent"
MESSAGE_FAILED = "Unable to send Message"
MESSAGE_SENT = "Message Sent"


@dataclass
class SendRequest:
    contact: str
    message: str
    multipart: bool
    form: FormData

    @property
    def kind(self) -> str:
        return "attachment" if self.multipart else "message"


async def read_send_request(request: Request) -> SendRequest:
    """Collect send fields from the body, falling back to the query string."""
    multipart = request.headers.get("content-type", "").startswith(MULTIPART)
    try:
        form = await request.form()
    except (HTTPException, MultiPartException) as e:
        # unparseable body: validation below answers 400
        log.warning("form_parse_failed", error=str(getattr(e, "detail", e)))
        form = FormData()

    def field(name: str) -> str:
        value = form.get(name)
        if isinstance(value, str):
            return value
        return request.query_params.get(name, "")

    return SendRequest(contact=field("contact"), message=field("message"), multipart=multipart, form=form)


async def dispatch_send(provider: Provider, req: SendRequest) -> APIResponse:
    """Validate, branch on multipart and map the provider outcome to an APIResponse.

    Nothing raised below leaves this function; the caller writes exactly
    one response.
    """
    try:
        if not req.contact or (not req.multipart and not req.message):
            raise ValidationError(MISSING_FIELDS)
        if not provider.ready:
            raise ProviderNotReadyError(f"provider is {provider.status.value}")
        if req.multipart:
            return await _send_attachment(provider, req)
        return await _send_message(provider, req)
    except ValidationError:
        return APIResponse(code=400, msg=MISSING_FIELDS)
    except CapabilityUnsupportedError:
        return APIResponse(code=403, msg=ATTACHMENTS_UNSUPPORTED)
    except ProviderNotReadyError as e:
        log.warning("provider_not_ready", error=str(e))
        return APIResponse(code=503, msg=NOT_READY)


async def _send_message(provider: Provider, req: SendRequest) -> APIResponse:
    try:
        await provider.send_message(req.contact, req.message)
    except DeliveryError as e:
        log.warning("send_message_failed", contact=req.contact, error=str(e))
        return APIResponse(code=500, msg=MESSAGE_FAILED)
    except Exception as e:
        log.exception("send_message_failed", contact=req.contact, error=str(e))
        return APIResponse(code=500, msg=MESSAGE_FAILED)
    return APIResponse(code=200, msg=MESSAGE_SENT)


async def _send_attachment(provider: Provider, req: SendRequest) -> APIResponse:
    if not supports_attachments(provider):
        raise CapabilityUnsupportedError(ATTACHMENTS_UNSUPPORTED)
    try:
        upload = _extract_upload(req.form)
    except UploadExtractionError as e:
        log.warning("attachment_extraction_failed", contact=req.contact, error=str(e))
        return APIResponse(code=500, msg=ATTACHMENT_FAILED)
    try:
        await provider.send_attachment(
            req.contact,
            req.message,
            OutboundAttachment(
                filename=upload.filename or "attachment",
                content_type=upload.content_type or "application/octet-stream",
                stream=upload.file,
            ),
        )
    except DeliveryError as e:
        log.warning("send_attachment_failed", contact=req.contact, error=str(e))
        return APIResponse(code=500, msg=ATTACHMENT_FAILED)
    except Exception as e:
        log.exception("send_attachment_failed", contact=req.contact, error=str(e))
        return APIResponse(code=500, msg=ATTACHMENT_FAILED)
    finally:
        await upload.close()
    return APIResponse(code=200, msg=ATTACHMENT_SENT)


def _extract_upload(form: FormData) -> UploadFile:
    upload = form.get("attachment")
    if not isinstance(upload, UploadFile):
        raise UploadExtractionError("no file in form field 'attachment'")
    return upload
