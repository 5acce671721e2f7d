# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send orchestration for the mail relay.

:class:`MailRelay` ties the pieces together: it builds the outgoing message,
submits it through the :class:`SmtpTransport` and, when enabled, schedules a
best-effort copy into the IMAP Sent mailbox. The copy runs as a detached
background task after the SMTP result is known; its outcome never changes the
result returned to the caller.

Example:
    Running the relay::

        relay = MailRelay(load_settings())
        await relay.start()
        result = await relay.send(SendParams(to=["a@example.com"], subject="Hi", text="Hello"))
        await relay.stop()
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import replace
from email.message import EmailMessage

from .composer import build_rfc822_message, make_message_id
from .config_loader import RelaySettings
from .imap import SentCopyAppender
from .logger import get_logger, mask_user
from .models import OutgoingAttachment, SendParams, SendResult
from .smtp_transport import SmtpErrorKind, SmtpSendError, SmtpTransport

STOP_DRAIN_TIMEOUT = 10.0


def guess_mime(attachment: OutgoingAttachment) -> tuple[str, str]:
    """Return ``(maintype, subtype)`` from the explicit type or the filename."""
    if attachment.content_type and "/" in attachment.content_type:
        maintype, subtype = attachment.content_type.split("/", 1)
        return maintype, subtype
    mt, _ = mimetypes.guess_type(attachment.filename)
    if not mt:
        return ("application", "octet-stream")
    maintype, subtype = mt.split("/", 1)
    return maintype, subtype


def build_email(params: SendParams, sender: str, message_id: str) -> EmailMessage:
    """Build the outgoing message submitted over SMTP."""
    msg = EmailMessage()
    msg["Message-ID"] = message_id
    msg["From"] = sender
    msg["To"] = ", ".join(params.to)
    if params.cc:
        msg["Cc"] = ", ".join(params.cc)
    if params.bcc:
        msg["Bcc"] = ", ".join(params.bcc)
    msg["Subject"] = params.subject

    if params.text is not None:
        msg.set_content(params.text)
        if params.html:
            msg.add_alternative(params.html, subtype="html")
    elif params.html:
        msg.set_content(params.html, subtype="html")
    else:
        msg.set_content("")

    for att in params.attachments:
        maintype, subtype = guess_mime(att)
        msg.add_attachment(att.content, maintype=maintype, subtype=subtype, filename=att.filename)
    return msg


class MailRelay:
    """Relay HTTP send requests to SMTP, with an optional IMAP Sent copy.

    Attributes:
        settings: Runtime configuration.
        transport: The owned SMTP transport.
        appender: Writer of Sent copies over IMAP.
    """

    def __init__(
        self,
        settings: RelaySettings,
        transport: SmtpTransport | None = None,
        appender: SentCopyAppender | None = None,
        logger=None,
    ):
        self.settings = settings
        self.logger = logger or get_logger("MailRelay")
        self.transport = transport or SmtpTransport(settings.smtp)
        self.appender = appender or SentCopyAppender(settings.imap)
        self._background: set[asyncio.Task] = set()

    @property
    def sender(self) -> str | None:
        return self.settings.smtp.from_email or self.settings.smtp.user

    @property
    def pending_copies(self) -> int:
        return len(self._background)

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Verify the SMTP connection when configured to.

        Raises:
            SmtpSendError: If verification fails.
        """
        smtp = self.settings.smtp
        self.logger.info(
            "Starting mail relay (smtp=%s:%d, secure=%s, user=%s, sent copy=%s)",
            smtp.host, smtp.port, smtp.secure, mask_user(smtp.user), self.settings.imap.save_sent_copy,
        )
        if smtp.verify_on_start:
            await self.transport.verify()
            self.logger.info("SMTP connection verified")

    async def stop(self) -> None:
        """Wait for in-flight Sent copies, then dispose the transport."""
        if self._background:
            self.logger.info("Waiting for %d pending Sent copies", len(self._background))
            _, pending = await asyncio.wait(set(self._background), timeout=STOP_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
            if pending:
                self.logger.warning("Cancelled %d Sent copies still running at shutdown", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
        await self.transport.close()

    # ----------------------------------------------------------------- messaging
    async def send(self, params: SendParams) -> SendResult:
        """Send one message and schedule its Sent copy.

        Raises:
            SmtpSendError: Classified SMTP failure.
        """
        sender = self.sender
        if not sender:
            raise SmtpSendError(SmtpErrorKind.UNKNOWN, "No sender address configured (FROM_EMAIL or SMTP_USER)")

        message_id = params.message_id or make_message_id(sender)
        msg = build_email(params, sender, message_id)
        accepted, rejected = await self.transport.send(msg, params.recipients)
        self.logger.info(
            "Email sent %s to %s (accepted=%d, rejected=%d)",
            message_id, ", ".join(params.to), len(accepted), len(rejected),
        )

        if self.settings.imap.save_sent_copy:
            raw = build_rfc822_message(replace(params, message_id=message_id), sender)
            self._spawn_copy(raw, message_id)

        return SendResult(message_id=message_id, accepted=accepted, rejected=rejected)

    def _spawn_copy(self, raw: bytes, message_id: str) -> None:
        task = asyncio.create_task(self.appender.append(raw), name=f"sent-copy-{message_id}")
        self._background.add(task)
        task.add_done_callback(self._on_copy_done)

    def _on_copy_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            self.logger.warning("Sent copy task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Sent copy task %s failed: %s", task.get_name(), exc)
        elif not task.result():
            self.logger.debug("Sent copy task %s did not store a copy", task.get_name())

