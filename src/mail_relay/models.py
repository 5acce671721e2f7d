# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models and plain data carriers for the mail relay.

This module defines the HTTP request/response schemas validated by FastAPI
and the internal dataclasses passed between the API, the orchestrator and
the message composer.

Models:
    - AttachmentPayload: Base64 attachment carried in a send request
    - SendRequest: Body of ``POST /send``
    - SendResponse: Successful ``POST /send`` response
    - ErrorResponse: Error body shared by every failing endpoint
    - OutgoingAttachment / SendParams / SendResult: internal carriers
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class AttachmentPayload(BaseModel):
    """Email attachment carried inline as base64.

    Attributes:
        filename: Attachment filename.
        content: Base64-encoded attachment content.
        content_type: Optional MIME type (``contentType`` on the wire).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    filename: Annotated[
        str,
        Field(min_length=1, max_length=255, description="Attachment filename")
    ]
    content: Annotated[
        str,
        Field(min_length=1, description="Base64-encoded content")
    ]
    content_type: Annotated[
        str | None,
        Field(default=None, alias="contentType", description="MIME type override")
    ]

    @field_validator("content")
    @classmethod
    def content_must_be_base64(cls, v: str) -> str:
        """Reject content that does not decode as base64."""
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("content must be valid base64") from exc
        return v

    def decoded(self) -> bytes:
        return base64.b64decode(self.content)


class SendRequest(BaseModel):
    """Payload accepted by ``POST /send``.

    ``to``, ``cc`` and ``bcc`` accept a single address, a comma separated
    string or a list of addresses; they are normalised to lists. At least one
    of ``text`` and ``html`` must be present.
    """

    model_config = ConfigDict(extra="forbid")

    to: Annotated[
        list[EmailStr],
        Field(min_length=1, description="Recipient address(es)")
    ]
    cc: Annotated[
        list[EmailStr] | None,
        Field(default=None, description="CC address(es)")
    ]
    bcc: Annotated[
        list[EmailStr] | None,
        Field(default=None, description="BCC address(es)")
    ]
    subject: Annotated[
        str,
        Field(min_length=1, max_length=998, description="Email subject")
    ]
    text: Annotated[
        str | None,
        Field(default=None, description="Plain text body")
    ]
    html: Annotated[
        str | None,
        Field(default=None, description="HTML body")
    ]
    attachments: Annotated[
        list[AttachmentPayload] | None,
        Field(default=None, description="Inline base64 attachments")
    ]

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def normalize_recipients(cls, v: list[str] | str | None) -> list[str] | None:
        """Convert string recipients to list."""
        if v is None:
            return None
        if isinstance(v, str):
            return [addr.strip() for addr in v.split(",") if addr.strip()]
        return v

    @model_validator(mode="after")
    def require_body(self) -> "SendRequest":
        if not self.text and not self.html:
            raise ValueError("at least one of 'text' or 'html' is required")
        return self


class SendResponse(BaseModel):
    """Response returned by a successful ``POST /send``."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    accepted: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error body returned by failing endpoints."""

    error: str
    details: Any = None


@dataclass
class OutgoingAttachment:
    """Decoded attachment ready to be added to an outgoing message."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass
class SendParams:
    """Parameters of a single send, already validated."""

    to: list[str]
    subject: str
    from_addr: str | None = None
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)
    text: str | None = None
    html: str | None = None
    attachments: list[OutgoingAttachment] = field(default_factory=list)
    message_id: str | None = None

    @classmethod
    def from_request(cls, request: SendRequest) -> "SendParams":
        return cls(
            to=[str(a) for a in request.to],
            cc=[str(a) for a in request.cc or []],
            bcc=[str(a) for a in request.bcc or []],
            subject=request.subject,
            text=request.text,
            html=request.html,
            attachments=[
                OutgoingAttachment(att.filename, att.decoded(), att.content_type)
                for att in request.attachments or []
            ],
        )

    @property
    def recipients(self) -> list[str]:
        return [*self.to, *self.cc, *self.bcc]


@dataclass
class SendResult:
    """Outcome of a successful SMTP submission."""

    message_id: str
    accepted: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
