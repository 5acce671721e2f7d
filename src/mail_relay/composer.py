# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Raw RFC822 builder for the copy stored in the Sent mailbox.

The builder is a pure function: it emits headers and body verbatim, always as
UTF-8 with ``Content-Transfer-Encoding: 8bit`` and CRLF line endings. No
quoting or encoding of header values is performed, and attachments are not
part of the stored copy.

Example:
    Building the Sent copy of a message::

        raw = build_rfc822_message(params, "relay@example.com")
        await appender.append(raw)
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Iterable
from email.utils import formatdate

from .models import SendParams

CRLF = "\r\n"
DEFAULT_DOMAIN = "localhost"


def _domain_of(address: str | None) -> str:
    if address and "@" in address:
        return address.rsplit("@", 1)[1].strip(" >") or DEFAULT_DOMAIN
    return DEFAULT_DOMAIN


def make_message_id(from_address: str | None = None) -> str:
    """Generate a Message-ID from a timestamp, a random token and a domain."""
    return f"<{int(time.time() * 1000)}.{secrets.token_hex(8)}@{_domain_of(from_address)}>"


def _join_addresses(value: str | Iterable[str] | None) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return ", ".join(value)


def _single_part(content_type: str, body: str) -> str:
    return (
        f"Content-Type: {content_type}; charset=utf-8{CRLF}"
        f"Content-Transfer-Encoding: 8bit{CRLF}{CRLF}"
        f"{body}{CRLF}"
    )


def build_rfc822_message(params: SendParams, from_address: str | None = None) -> bytes:
    """Build the raw RFC822 bytes of a message.

    Args:
        params: Send parameters (recipients, subject, text/html body and an
            optional pre-set ``message_id``).
        from_address: Configured sender; takes precedence over
            ``params.from_addr``.

    Returns:
        The message as UTF-8 encoded bytes.
    """
    sender = from_address or params.from_addr or ""
    message_id = params.message_id or make_message_id(sender)
    text = params.text or ""
    html = params.html

    raw = (
        f"Message-ID: {message_id}{CRLF}"
        f"Date: {formatdate(usegmt=True)}{CRLF}"
        f"From: {sender}{CRLF}"
        f"To: {_join_addresses(params.to)}{CRLF}"
        f"Subject: {params.subject or ''}{CRLF}"
        f"MIME-Version: 1.0{CRLF}"
    )
    if params.cc:
        raw += f"Cc: {_join_addresses(params.cc)}{CRLF}"
    if params.bcc:
        raw += f"Bcc: {_join_addresses(params.bcc)}{CRLF}"

    if html and params.text:
        boundary = f"boundary_{int(time.time() * 1000)}_{secrets.token_hex(8)}"
        raw += f'Content-Type: multipart/alternative; boundary="{boundary}"{CRLF}{CRLF}'
        raw += f"--{boundary}{CRLF}" + _single_part("text/plain", text) + CRLF
        raw += f"--{boundary}{CRLF}" + _single_part("text/html", html) + CRLF
        raw += f"--{boundary}--{CRLF}"
    elif html:
        raw += _single_part("text/html", html)
    else:
        raw += _single_part("text/plain", text)

    return raw.encode("utf-8")
