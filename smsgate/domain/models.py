"""Domain models for the gateway."""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================


class ProviderStatus(str, Enum):
    """Provider lifecycle status, owned by the lifecycle coordinator."""

    offline = "offline"
    starting = "starting"
    ready = "ready"
    error = "error"
    stopping = "stopping"
    stopped = "stopped"


# ============================================================================
# HTTP envelope
# ============================================================================


class APIResponse(BaseModel):
    """Response envelope for every HTTP outcome.

    Serialized as ``{"code": <int>, "msg": "<str>"}``; ``code`` is also the
    transport status.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: int
    message: str = Field(alias="msg")

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.code, content=self.model_dump(by_alias=True))


# ============================================================================
# Messages
# ============================================================================


class InboundAttachment(abc.ABC):
    """Attachment of an inbound message. Bytes are fetched on first read."""

    mime_type: str

    @abc.abstractmethod
    async def read(self) -> bytes:
        ...


@dataclass
class BytesAttachment(InboundAttachment):
    """Attachment already held in memory."""

    mime_type: str
    data: bytes

    async def read(self) -> bytes:
        return self.data


@dataclass
class InboundMessage:
    source: str
    text: str
    attachments: list[InboundAttachment] = field(default_factory=list)


@dataclass
class OutboundAttachment:
    """Uploaded file handed to an attachment-capable provider.

    The stream belongs to the HTTP layer, which closes it after the send.
    """

    filename: str
    content_type: str
    stream: BinaryIO
