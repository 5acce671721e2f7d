# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""IMAP support: session wrapper, Sent-folder discovery and Sent copies."""

from .appender import FALLBACK_MAILBOXES, SentCopyAppender
from .client import IMAPClient, IMAPCommandError, MailboxDescriptor, MailboxLock, parse_list_line, quote_mailbox
from .sentbox import (
    ResolutionResult,
    SentFolderDiscoveryError,
    SentFolderResolver,
    detect_delimiter,
)

__all__ = [
    "FALLBACK_MAILBOXES",
    "IMAPClient",
    "IMAPCommandError",
    "MailboxDescriptor",
    "MailboxLock",
    "ResolutionResult",
    "SentCopyAppender",
    "SentFolderDiscoveryError",
    "SentFolderResolver",
    "detect_delimiter",
    "parse_list_line",
    "quote_mailbox",
]
