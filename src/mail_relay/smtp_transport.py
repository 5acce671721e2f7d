# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP transport and SMTP error taxonomy.

The transport is an explicitly constructed object owned by the relay. Its
lifecycle is explicit: construct it with an :class:`SmtpConfig`, call
:meth:`SmtpTransport.verify` at startup, :meth:`SmtpTransport.send` per
request and :meth:`SmtpTransport.close` at shutdown. Each send opens its own
connection, so concurrent requests never share SMTP state.

TLS behavior:
- ``secure=True``: implicit TLS (typically port 465)
- ``secure=False``: STARTTLS is required (typically port 587)

Example:
    Sending a message::

        transport = SmtpTransport(settings.smtp)
        await transport.verify()
        accepted, rejected = await transport.send(msg, ["dest@example.com"])
        await transport.close()
"""

from __future__ import annotations

import asyncio
import ssl
from email.message import EmailMessage
from enum import Enum

import aiosmtplib

from .config_loader import SmtpConfig
from .logger import get_logger


class SmtpErrorKind(str, Enum):
    """Classes of SMTP failure, each mapped to an HTTP status."""

    AUTH = "auth"
    CONNECTION = "connection"
    TLS = "tls"
    RECIPIENT = "recipient"
    UNKNOWN = "unknown"


ERROR_STATUS = {
    SmtpErrorKind.AUTH: 401,
    SmtpErrorKind.CONNECTION: 502,
    SmtpErrorKind.TLS: 502,
    SmtpErrorKind.RECIPIENT: 422,
    SmtpErrorKind.UNKNOWN: 500,
}

ERROR_MESSAGES = {
    SmtpErrorKind.AUTH: "SMTP authentication failed",
    SmtpErrorKind.CONNECTION: "Could not connect to the SMTP server",
    SmtpErrorKind.TLS: "TLS/SSL error while talking to the SMTP server",
    SmtpErrorKind.RECIPIENT: "Invalid or rejected email address",
    SmtpErrorKind.UNKNOWN: "Internal SMTP server error",
}

# Checked in this order against the lowercased error text.
_MESSAGE_PATTERNS: list[tuple[SmtpErrorKind, tuple[str, ...]]] = [
    (SmtpErrorKind.AUTH, ("authentication", "auth", "invalid login", "535")),
    (SmtpErrorKind.CONNECTION, ("connection", "connect", "timeout", "timed out", "enotfound",
                                "name or service not known", "network", "dns")),
    (SmtpErrorKind.TLS, ("tls", "ssl", "certificate")),
    (SmtpErrorKind.RECIPIENT, ("recipient", "invalid", "550", "553")),
]


class SmtpSendError(RuntimeError):
    """Raised when an SMTP submission fails.

    Attributes:
        kind: The :class:`SmtpErrorKind` of the failure.
        status: HTTP status the failure maps to.
        public_message: Message safe to return to HTTP clients.
    """

    def __init__(self, kind: SmtpErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.status = ERROR_STATUS[kind]
        self.public_message = ERROR_MESSAGES[kind]


def classify_smtp_error(exc: BaseException) -> SmtpErrorKind:
    """Classify an SMTP failure into the relay's error taxonomy.

    Exception types are checked first; the error text is then matched
    against known patterns. Anything unrecognised is ``UNKNOWN``.
    """
    if isinstance(exc, SmtpSendError):
        return exc.kind
    if isinstance(exc, aiosmtplib.SMTPAuthenticationError):
        return SmtpErrorKind.AUTH
    # ssl.SSLError is an OSError, so it must be tested before connectivity
    if isinstance(exc, (ssl.SSLError, ssl.CertificateError)):
        return SmtpErrorKind.TLS
    if isinstance(exc, (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPRecipientRefused)):
        return SmtpErrorKind.RECIPIENT
    if isinstance(exc, aiosmtplib.SMTPResponseException):
        if exc.code in (530, 534, 535):
            return SmtpErrorKind.AUTH
        if exc.code in (550, 553):
            return SmtpErrorKind.RECIPIENT

    error_msg = str(exc).lower()
    cause = exc.__cause__
    if cause is not None:
        error_msg = f"{error_msg} {cause}".lower()
    # TLS failures are often wrapped in connect errors, so look at the text first
    if isinstance(exc, aiosmtplib.SMTPConnectError) and any(
        p in error_msg for p in ("ssl", "tls", "certificate")
    ):
        return SmtpErrorKind.TLS
    if isinstance(
        exc,
        (
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPServerDisconnected,
            aiosmtplib.SMTPTimeoutError,
            asyncio.TimeoutError,
            TimeoutError,
            ConnectionError,
            OSError,
        ),
    ):
        return SmtpErrorKind.CONNECTION

    for kind, patterns in _MESSAGE_PATTERNS:
        if any(pattern in error_msg for pattern in patterns):
            return kind
    return SmtpErrorKind.UNKNOWN


class SmtpTransport:
    """Owned SMTP client with an explicit construct/verify/send/close lifecycle.

    Attributes:
        config: The SMTP settings this transport connects with.
    """

    def __init__(self, config: SmtpConfig, logger=None):
        self.config = config
        self.logger = logger or get_logger("SmtpTransport")
        self._closed = False

    def _create_client(self) -> aiosmtplib.SMTP:
        cfg = self.config
        if cfg.secure:
            # Implicit TLS, typically port 465
            return aiosmtplib.SMTP(
                hostname=cfg.host, port=cfg.port, start_tls=False, use_tls=True, timeout=cfg.timeout
            )
        # STARTTLS is mandatory on submission ports
        return aiosmtplib.SMTP(
            hostname=cfg.host, port=cfg.port, start_tls=True, use_tls=False, timeout=cfg.timeout
        )

    async def _connect(self) -> aiosmtplib.SMTP:
        """Open and authenticate a new SMTP connection.

        Raises:
            asyncio.TimeoutError: If connecting takes longer than the bound.
            aiosmtplib.SMTPException: If connection or authentication fails.
        """
        smtp = self._create_client()

        async def _do_connect():
            await smtp.connect()
            if self.config.user and self.config.password:
                await smtp.login(self.config.user, self.config.password)

        # Outer bound in case the client timeout does not fire
        await asyncio.wait_for(_do_connect(), timeout=self.config.timeout + 5.0)
        return smtp

    async def _quit(self, smtp: aiosmtplib.SMTP) -> None:
        try:
            await smtp.quit()
        except Exception as exc:
            self.logger.debug("SMTP quit failed: %s", exc)

    async def verify(self) -> None:
        """Check that the server accepts a connection and our credentials.

        Raises:
            SmtpSendError: If the server cannot be reached or rejects login.
        """
        if self._closed:
            raise RuntimeError("SMTP transport is closed")
        try:
            smtp = await self._connect()
        except Exception as exc:
            raise SmtpSendError(classify_smtp_error(exc), str(exc)) from exc
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            if code != 250:
                raise SmtpSendError(SmtpErrorKind.UNKNOWN, f"Unexpected NOOP reply {code}")
        except SmtpSendError:
            raise
        except Exception as exc:
            raise SmtpSendError(classify_smtp_error(exc), str(exc)) from exc
        finally:
            await self._quit(smtp)

    async def send(self, message: EmailMessage, recipients: list[str]) -> tuple[list[str], list[str]]:
        """Submit a message and report which recipients were accepted.

        Args:
            message: The message to send. Bcc headers are stripped by aiosmtplib.
            recipients: Envelope recipients (To, Cc and Bcc addresses).

        Returns:
            Tuple of (accepted, rejected) recipient lists.

        Raises:
            SmtpSendError: Classified failure of the submission.
            RuntimeError: If the transport has been closed.
        """
        if self._closed:
            raise RuntimeError("SMTP transport is closed")
        try:
            smtp = await self._connect()
        except Exception as exc:
            raise SmtpSendError(classify_smtp_error(exc), str(exc)) from exc
        try:
            errors, _response = await asyncio.wait_for(
                smtp.send_message(message, recipients=recipients), timeout=30.0
            )
        except Exception as exc:
            raise SmtpSendError(classify_smtp_error(exc), str(exc)) from exc
        finally:
            await self._quit(smtp)

        rejected = [r for r in recipients if r in errors]
        accepted = [r for r in recipients if r not in errors]
        return accepted, rejected

    async def close(self) -> None:
        """Dispose the transport; further sends raise ``RuntimeError``."""
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
