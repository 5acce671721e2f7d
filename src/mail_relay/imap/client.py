# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async IMAP client wrapper used for Sent-folder discovery and Sent copies."""

from __future__ import annotations

import asyncio
import re
import ssl
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from imapclient import imap_utf7

if TYPE_CHECKING:
    from logging import Logger

    import aioimaplib

SPECIAL_USE_FLAGS = frozenset({"\\All", "\\Archive", "\\Drafts", "\\Flagged", "\\Junk", "\\Sent", "\\Trash"})

_LIST_RE = re.compile(
    r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class MailboxDescriptor:
    """Snapshot of one mailbox as reported by LIST."""

    path: str
    delimiter: str | None
    flags: frozenset[str]
    special_use: str | None = None

    @property
    def is_sent(self) -> bool:
        return self.special_use == "\\Sent" or "\\Sent" in self.flags


class IMAPCommandError(RuntimeError):
    """An IMAP command completed with NO or BAD."""

    def __init__(self, command: str, result: str, lines: Iterable[str] = ()):
        self.command = command
        self.result = result
        self.lines = list(lines)
        detail = " ".join(line for line in self.lines if line).strip()
        super().__init__(f"{command} failed ({result}): {detail}" if detail else f"{command} failed ({result})")

    @property
    def trycreate(self) -> bool:
        """True when the server hinted that the mailbox must be created first."""
        return any("TRYCREATE" in line.upper() for line in self.lines)


def describe_error(exc: BaseException) -> str:
    """Exception text, or its class name when the text is empty (timeouts)."""
    return str(exc) or type(exc).__name__


def _decode_line(line) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def quote_mailbox(path: str) -> str:
    """Encode a mailbox name as modified UTF-7 and quote it for the wire."""
    encoded = imap_utf7.encode(path)
    if isinstance(encoded, bytes):
        encoded = encoded.decode("ascii")
    escaped = encoded.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_list_line(line) -> MailboxDescriptor | None:
    """Parse one untagged LIST response line.

    Example line: ``(\\HasNoChildren \\Sent) "/" "Sent Items"``.
    Returns None for completion lines and for names sent as literals.
    """
    text = _decode_line(line).strip()
    match = _LIST_RE.match(text)
    if not match:
        return None
    raw_name = match.group("name").strip()
    if raw_name.startswith("{"):
        return None
    flags = frozenset(f for f in match.group("flags").split() if f)
    delim = match.group("delim")
    delimiter = None if delim.upper() == "NIL" else _unquote(delim)
    path = _unquote(raw_name)
    # UTF8=ACCEPT servers send non-ASCII names unencoded
    if path.isascii():
        path = imap_utf7.decode(path.encode("ascii"))
    special_use = next((f for f in flags if f in SPECIAL_USE_FLAGS), None)
    return MailboxDescriptor(path=path, delimiter=delimiter, flags=flags, special_use=special_use)


class MailboxLock:
    """A selected mailbox held by one caller until released."""

    def __init__(self, client: IMAPClient, path: str):
        self._client = client
        self.path = path
        self._released = False

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._client._release_lock(self)

    async def __aenter__(self) -> MailboxLock:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()


class IMAPClient:
    """Async IMAP client wrapper using aioimaplib.

    One instance is one session. Mailbox selection is guarded by a client-side
    lock so that a caller holding a mailbox is never interleaved with another
    SELECT on the same session.
    """

    def __init__(self, logger: Logger | None = None, timeout: float | None = None):
        self._client: aioimaplib.IMAP4_SSL | aioimaplib.IMAP4 | None = None
        self._logger = logger
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._held: MailboxLock | None = None
        self._capabilities: frozenset[str] = frozenset()
        self._closed = False

    async def connect(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        use_ssl: bool = True,
    ) -> None:
        """Connect and authenticate to IMAP server."""
        import aioimaplib

        kwargs = {"timeout": self._timeout} if self._timeout else {}
        if use_ssl:
            ssl_context = ssl.create_default_context()
            self._client = aioimaplib.IMAP4_SSL(host=host, port=port, ssl_context=ssl_context, **kwargs)
        else:
            self._client = aioimaplib.IMAP4(host=host, port=port, **kwargs)

        await self._client.wait_hello_from_server()
        response = await self._client.login(user, password)
        if response.result != "OK":
            raise ConnectionError(f"IMAP login failed: {[_decode_line(line) for line in response.lines]}")

        self._refresh_capabilities()
        if self._logger:
            self._logger.debug("IMAP connected to %s:%d", host, port)

    def _require(self) -> aioimaplib.IMAP4:
        if not self._client:
            raise RuntimeError("Not connected")
        return self._client

    @staticmethod
    def _check(command: str, response) -> list[str]:
        lines = [_decode_line(line) for line in response.lines]
        if response.result != "OK":
            raise IMAPCommandError(command, response.result, lines)
        return lines

    @property
    def capabilities(self) -> frozenset[str]:
        return self._capabilities

    def has_capability(self, name: str) -> bool:
        return name.upper() in self._capabilities

    def _refresh_capabilities(self) -> None:
        protocol = self._require().protocol
        self._capabilities = frozenset(c.upper() for c in protocol.capabilities or ())

    async def get_capabilities(self) -> frozenset[str]:
        """Ask the server for its capabilities and cache them.

        The protocol updates its capability set in place after the
        CAPABILITY command completes.
        """
        await asyncio.wait_for(self._require().protocol.capability(), self._timeout)
        self._refresh_capabilities()
        return self._capabilities

    async def list_folders(self, special_use: bool = False) -> list[MailboxDescriptor]:
        """List every mailbox, or only those carrying SPECIAL-USE attributes."""
        client = self._require()
        if special_use:
            response = await client.list('(SPECIAL-USE) ""', '"*"')
        else:
            response = await client.list('""', '"*"')
        lines = self._check("LIST", response)
        folders = [mb for mb in (parse_list_line(line) for line in lines) if mb is not None]
        if self._logger:
            self._logger.debug("LIST returned %d mailboxes (special_use=%s)", len(folders), special_use)
        return folders

    async def lock_mailbox(self, path: str) -> MailboxLock:
        """Select a mailbox and hold it until the returned lock is released.

        Raises:
            IMAPCommandError: If the server refuses to select the mailbox.
        """
        client = self._require()
        await self._lock.acquire()
        try:
            self._check("SELECT", await client.select(quote_mailbox(path)))
        except BaseException:
            self._lock.release()
            raise
        self._held = MailboxLock(self, path)
        if self._logger:
            self._logger.debug("Mailbox %s locked", path)
        return self._held

    def _release_lock(self, lock: MailboxLock) -> None:
        if self._held is lock:
            self._held = None
            self._lock.release()

    async def create_folder(self, path: str, special_use: str | None = None) -> None:
        """Create a mailbox, requesting a special-use role when supported."""
        arg = quote_mailbox(path)
        if special_use and self.has_capability("CREATE-SPECIAL-USE"):
            arg = f"{arg} (USE ({special_use}))"
        self._check("CREATE", await self._require().create(arg))

    async def append(
        self,
        path: str,
        raw: bytes,
        flags: Iterable[str] = (),
        date: datetime | None = None,
    ) -> None:
        """Append a raw RFC822 message to a mailbox.

        Raises:
            IMAPCommandError: On NO/BAD; check ``trycreate`` for a missing mailbox.
        """
        flag_str = " ".join(flags) or None
        response = await self._require().append(raw, mailbox=quote_mailbox(path), flags=flag_str, date=date)
        self._check("APPEND", response)

    async def search_header(self, header: str, value: str) -> list[str]:
        """Search the selected mailbox by header; returns sequence numbers."""
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        response = await self._require().search("HEADER", header, f'"{escaped}"', charset=None)
        lines = self._check("SEARCH", response)
        ids: list[str] = []
        # The last line is the tagged completion text
        for line in lines[:-1]:
            ids.extend(token for token in line.split() if token.isdigit())
        return ids

    async def delete_messages(self, ids: Iterable[str]) -> int:
        """Flag messages in the selected mailbox as deleted and expunge them."""
        id_list = list(ids)
        if not id_list:
            return 0
        client = self._require()
        self._check("STORE", await client.store(",".join(id_list), "+FLAGS", "(\\Deleted)"))
        self._check("EXPUNGE", await client.expunge())
        return len(id_list)

    async def close(self) -> None:
        """Release any held mailbox, then log out. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self._held is not None:
            await self._held.release()
        if self._client:
            try:
                await self._client.logout()
            except Exception as exc:
                if self._logger:
                    self._logger.debug("IMAP logout failed: %s", exc)
            self._client = None
            if self._logger:
                self._logger.debug("IMAP connection closed")


__all__ = [
    "IMAPClient",
    "IMAPCommandError",
    "MailboxDescriptor",
    "MailboxLock",
    "describe_error",
    "parse_list_line",
    "quote_mailbox",
]
