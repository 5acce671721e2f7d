from dataclasses import replace

import pytest

from mail_relay.imap.appender import FALLBACK_MAILBOXES, SentCopyAppender
from mail_relay.imap.client import IMAPCommandError

RAW = b"Subject: hi\r\n\r\nbody\r\n"


def make_appender(config, session):
    return SentCopyAppender(config, session_factory=lambda: session)


@pytest.mark.asyncio
async def test_disabled_appender_does_nothing(imap_config, fake_session):
    config = replace(imap_config, save_sent_copy=False)
    sessions = []
    appender = SentCopyAppender(config, session_factory=lambda: sessions.append(1) or fake_session)

    assert await appender.append(RAW) is False
    assert sessions == []
    assert fake_session.calls == []


@pytest.mark.asyncio
async def test_missing_credentials_skip(imap_config, fake_session):
    config = replace(imap_config, password=None)
    assert await make_appender(config, fake_session).append(RAW) is False
    assert fake_session.calls == []


@pytest.mark.asyncio
async def test_empty_message_skips(imap_config, fake_session):
    assert await make_appender(imap_config, fake_session).append(b"") is False
    assert fake_session.calls == []


@pytest.mark.asyncio
async def test_appends_to_configured_mailbox(imap_config, fake_session):
    assert await make_appender(imap_config, fake_session).append(RAW) is True

    path, raw, flags, date = fake_session.appended[0]
    assert path == "Sent"
    assert raw == RAW
    assert flags == ("\\Seen",)
    assert date is not None and date.tzinfo is not None
    assert fake_session.calls[-1] == ("release", "Sent")
    assert fake_session.closed == 1


@pytest.mark.asyncio
async def test_falls_back_when_configured_mailbox_missing(imap_config, fake_session):
    config = replace(imap_config, mailbox="Posta inviata")
    fake_session.unlockable.update({"Posta inviata", "Enviados"})

    assert await make_appender(config, fake_session).append(RAW) is True
    assert fake_session.appended[0][0] == "Sent"
    assert [call[1] for call in fake_session.commands("lock")] == ["Posta inviata", "Enviados", "Sent"]


def test_candidates_skip_configured_name(imap_config):
    appender = SentCopyAppender(replace(imap_config, mailbox="Sent"))
    assert appender.mailbox_candidates() == ["Sent", "Enviados", "Sent Items", "INBOX.Sent"]
    assert len(SentCopyAppender(replace(imap_config, mailbox="Other")).mailbox_candidates()) == len(FALLBACK_MAILBOXES) + 1


@pytest.mark.asyncio
async def test_no_usable_mailbox_returns_false(imap_config, fake_session):
    fake_session.unlockable.update({"Sent", *FALLBACK_MAILBOXES})
    assert await make_appender(imap_config, fake_session).append(RAW) is False
    assert fake_session.appended == []
    assert fake_session.closed == 1


@pytest.mark.asyncio
async def test_errors_never_propagate(imap_config, fake_session):
    fake_session.append_errors = [IMAPCommandError("APPEND", "NO", ["quota"])]
    assert await make_appender(imap_config, fake_session).append(RAW) is False
    assert ("release", "Sent") in fake_session.calls
    assert fake_session.closed == 1


@pytest.mark.asyncio
async def test_connection_failure_returns_false(imap_config, fake_session):
    fake_session.connect_error = OSError("unreachable")
    assert await make_appender(imap_config, fake_session).append(RAW) is False
    assert fake_session.closed == 1
