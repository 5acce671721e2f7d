# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Best-effort copy of sent messages into the IMAP Sent mailbox.

The appender never raises: a failed copy is logged and reported as ``False``
so that it can never affect the outcome of an SMTP send.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

from ..config_loader import ImapConfig
from ..logger import get_logger, mask_user
from .client import IMAPClient, MailboxLock, describe_error

FALLBACK_MAILBOXES = ("Enviados", "Sent", "Sent Items", "INBOX.Sent")


class SentCopyAppender:
    """Append raw messages to the configured Sent mailbox over IMAP.

    Each call opens its own session, holds the target mailbox while
    appending and logs out unconditionally afterwards.
    """

    def __init__(
        self,
        config: ImapConfig,
        session_factory: Callable[[], IMAPClient] | None = None,
        logger=None,
    ):
        self.config = config
        self.logger = logger or get_logger("SentCopyAppender")
        self._session_factory = session_factory or (
            lambda: IMAPClient(logger=self.logger, timeout=config.timeout)
        )

    def mailbox_candidates(self) -> list[str]:
        """Configured mailbox first, then the fallbacks not already tried."""
        preferred = self.config.mailbox
        return [preferred, *(name for name in FALLBACK_MAILBOXES if name != preferred)]

    async def _lock_first_available(self, client: IMAPClient) -> MailboxLock | None:
        for name in self.mailbox_candidates():
            try:
                return await client.lock_mailbox(name)
            except Exception as exc:
                self.logger.debug("[IMAP] Cannot open mailbox %s: %s", name, describe_error(exc))
        return None

    async def append(self, raw: bytes) -> bool:
        """Store ``raw`` in the Sent mailbox.

        Returns:
            True if the copy was stored, False if it was skipped or failed.
        """
        cfg = self.config
        if not cfg.save_sent_copy:
            return False
        if not cfg.has_credentials:
            self.logger.warning("[IMAP] Sent copy skipped: IMAP credentials missing")
            return False
        if not raw:
            self.logger.warning("[IMAP] Sent copy skipped: empty message")
            return False

        client = self._session_factory()
        try:
            await client.connect(cfg.host, cfg.port, cfg.user, cfg.password, use_ssl=cfg.secure)
            lock = await self._lock_first_available(client)
            if lock is None:
                self.logger.error(
                    "[IMAP] No usable Sent mailbox for %s (tried %s)",
                    mask_user(cfg.user), ", ".join(self.mailbox_candidates()),
                )
                return False
            try:
                await asyncio.wait_for(
                    client.append(lock.path, raw, flags=("\\Seen",), date=datetime.now(timezone.utc)),
                    timeout=cfg.timeout,
                )
            finally:
                await lock.release()
            self.logger.info("[IMAP] Sent copy stored in %s", lock.path)
            return True
        except Exception as exc:
            self.logger.error("[IMAP] Could not store Sent copy: %s", describe_error(exc))
            return False
        finally:
            await client.close()
