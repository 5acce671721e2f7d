# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Shared fakes for tests that would otherwise need an IMAP server."""

from __future__ import annotations

import pytest

from mail_relay.config_loader import ImapConfig
from mail_relay.imap.client import SPECIAL_USE_FLAGS, IMAPCommandError, MailboxDescriptor


def mailbox(path: str, *flags: str, delimiter: str = "/") -> MailboxDescriptor:
    flag_set = frozenset(flags)
    special = next((f for f in flags if f in SPECIAL_USE_FLAGS), None)
    return MailboxDescriptor(path=path, delimiter=delimiter, flags=flag_set, special_use=special)


class FakeLock:
    def __init__(self, session: FakeIMAPSession, path: str):
        self.session = session
        self.path = path

    async def release(self) -> None:
        self.session.calls.append(("release", self.path))


class FakeIMAPSession:
    """In-memory stand-in for :class:`mail_relay.imap.client.IMAPClient`.

    Failures are configured per command; every call is recorded in ``calls``.
    """

    def __init__(self, folders=(), capabilities=()):
        self.folders: list[MailboxDescriptor] = list(folders)
        self.capabilities = frozenset(capabilities)
        self.connect_error: Exception | None = None
        self.special_use_error: Exception | None = None
        self.list_error: Exception | None = None
        self.unlockable: set[str] = set()
        self.create_errors: dict[str, Exception] = {}
        self.hide_created: set[str] = set()
        self.append_errors: list[Exception] = []
        self.search_result: list[str] = ["7"]
        self.calls: list[tuple] = []
        self.appended: list[tuple] = []
        self.closed = 0

    async def connect(self, host, port, user, password, use_ssl=True):
        self.calls.append(("connect", host, port, user, use_ssl))
        if self.connect_error:
            raise self.connect_error

    async def get_capabilities(self):
        return self.capabilities

    async def lock_mailbox(self, path):
        self.calls.append(("lock", path))
        if path in self.unlockable:
            raise IMAPCommandError("SELECT", "NO", [f"Mailbox doesn't exist: {path}"])
        return FakeLock(self, path)

    async def list_folders(self, special_use=False):
        self.calls.append(("list", special_use))
        if special_use:
            if self.special_use_error:
                raise self.special_use_error
            return [mb for mb in self.folders if mb.special_use]
        if self.list_error:
            raise self.list_error
        return list(self.folders)

    async def create_folder(self, path, special_use=None):
        self.calls.append(("create", path, special_use))
        if path in self.create_errors:
            raise self.create_errors[path]
        if path not in self.hide_created and all(mb.path != path for mb in self.folders):
            self.folders.append(mailbox(path))

    async def append(self, path, raw, flags=(), date=None):
        self.calls.append(("append", path))
        if self.append_errors:
            raise self.append_errors.pop(0)
        self.appended.append((path, raw, tuple(flags), date))

    async def search_header(self, header, value):
        self.calls.append(("search", header, value))
        return list(self.search_result)

    async def delete_messages(self, ids):
        ids = list(ids)
        self.calls.append(("delete", tuple(ids)))
        return len(ids)

    async def close(self):
        self.closed += 1

    def commands(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def imap_config():
    return ImapConfig(
        host="imap.test",
        port=993,
        secure=True,
        user="relay@example.com",
        password="secret",
        mailbox="Sent",
        timeout=5.0,
        save_sent_copy=True,
    )


@pytest.fixture
def fake_session():
    return FakeIMAPSession()


@pytest.fixture
def make_mailbox():
    return mailbox
