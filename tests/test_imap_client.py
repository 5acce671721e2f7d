import asyncio
import types
from datetime import datetime, timezone

import pytest

from mail_relay.imap.client import IMAPClient, IMAPCommandError, describe_error, parse_list_line, quote_mailbox


def response(result="OK", *lines):
    return types.SimpleNamespace(result=result, lines=[line.encode() if isinstance(line, str) else line for line in lines])


class FakeClientProtocol:
    """Mimics aioimaplib.IMAP4ClientProtocol: CAPABILITY updates the set in place."""

    def __init__(self, capabilities=(), advertised=()):
        self.capabilities = set(capabilities)
        self.advertised = set(advertised)
        self.capability_calls = 0

    async def capability(self):
        self.capability_calls += 1
        self.capabilities = self.capabilities | self.advertised


class FakeProtocol:
    """Mimics the subset of aioimaplib.IMAP4_SSL used by IMAPClient."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []
        self.protocol = FakeClientProtocol(
            capabilities={"IMAP4rev1", "SPECIAL-USE"}, advertised={"CREATE-SPECIAL-USE"}
        )
        self.login_result = "OK"
        self.select_result = "OK"
        self.list_lines = []
        self.append_result = response("OK", "APPEND completed")
        self.search_lines = ["SEARCH 3 5", "SEARCH completed"]

    async def wait_hello_from_server(self):
        self.calls.append(("hello",))

    async def login(self, user, password):
        self.calls.append(("login", user))
        return response(self.login_result, "LOGIN completed")

    async def list(self, ref, pattern):
        self.calls.append(("list", ref, pattern))
        return response("OK", *self.list_lines, "LIST completed")

    async def select(self, mailbox):
        self.calls.append(("select", mailbox))
        return response(self.select_result, "SELECT completed")

    async def create(self, arg):
        self.calls.append(("create", arg))
        return response("OK", "CREATE completed")

    async def append(self, raw, mailbox="INBOX", flags=None, date=None):
        self.calls.append(("append", mailbox, flags, date))
        return self.append_result

    async def search(self, *criteria, charset="utf-8"):
        self.calls.append(("search", criteria, charset))
        return response("OK", *self.search_lines)

    async def store(self, *args):
        self.calls.append(("store", args))
        return response("OK", "STORE completed")

    async def expunge(self):
        self.calls.append(("expunge",))
        return response("OK", "EXPUNGE completed")

    async def logout(self):
        self.calls.append(("logout",))
        return response("OK", "LOGOUT completed")


@pytest.fixture
def protocol():
    return FakeProtocol()


@pytest.fixture
def client(protocol):
    imap = IMAPClient()
    imap._client = protocol
    return imap


def test_parse_list_line_with_special_use():
    mb = parse_list_line(b'(\\HasNoChildren \\Sent) "/" "Sent Items"')
    assert mb.path == "Sent Items"
    assert mb.delimiter == "/"
    assert mb.special_use == "\\Sent"
    assert mb.is_sent


def test_parse_list_line_unquoted_and_nil_delimiter():
    mb = parse_list_line('(\\Noselect) NIL INBOX')
    assert mb.path == "INBOX"
    assert mb.delimiter is None
    assert mb.special_use is None
    assert not mb.is_sent


def test_parse_list_line_decodes_modified_utf7():
    mb = parse_list_line('(\\HasNoChildren) "." "&AMk-l&AOk-ments envoy&AOk-s"')
    assert mb.path == "Éléments envoyés"
    assert mb.delimiter == "."


def test_parse_list_line_skips_completion_and_literals():
    assert parse_list_line(b"LIST completed.") is None
    assert parse_list_line(b'(\\HasNoChildren) "/" {12}') is None


def test_quote_mailbox_encodes_and_escapes():
    assert quote_mailbox("Sent Items") == '"Sent Items"'
    assert quote_mailbox("Envoyés") == '"Envoy&AOk-s"'
    assert quote_mailbox('a"b') == '"a\\"b"'


def test_describe_error_falls_back_to_type_name():
    assert describe_error(asyncio.TimeoutError()) == "TimeoutError"
    assert describe_error(ValueError("bad")) == "bad"


def test_command_error_trycreate():
    err = IMAPCommandError("APPEND", "NO", ["[TRYCREATE] Mailbox doesn't exist"])
    assert err.trycreate
    assert "APPEND failed (NO)" in str(err)
    assert not IMAPCommandError("APPEND", "NO", ["[OVERQUOTA]"]).trycreate


@pytest.mark.asyncio
async def test_connect_logs_in_and_caches_capabilities(monkeypatch):
    created = []

    def factory(**kwargs):
        proto = FakeProtocol(**kwargs)
        created.append(proto)
        return proto

    monkeypatch.setattr("aioimaplib.IMAP4_SSL", factory)
    imap = IMAPClient(timeout=7)
    await imap.connect("imap.test", 993, "user", "pw")

    assert created[0].kwargs["host"] == "imap.test"
    assert created[0].kwargs["timeout"] == 7
    assert ("login", "user") in created[0].calls
    assert imap.has_capability("special-use")


@pytest.mark.asyncio
async def test_connect_rejects_failed_login(monkeypatch):
    def factory(**kwargs):
        proto = FakeProtocol(**kwargs)
        proto.login_result = "NO"
        return proto

    monkeypatch.setattr("aioimaplib.IMAP4_SSL", factory)
    with pytest.raises(ConnectionError):
        await IMAPClient().connect("imap.test", 993, "user", "bad")


@pytest.mark.asyncio
async def test_list_folders(client, protocol):
    protocol.list_lines = [
        '(\\HasNoChildren) "/" INBOX',
        '(\\HasNoChildren \\Sent) "/" "Sent Items"',
    ]
    folders = await client.list_folders(special_use=True)

    assert [mb.path for mb in folders] == ["INBOX", "Sent Items"]
    assert protocol.calls[-1] == ("list", '(SPECIAL-USE) ""', '"*"')
    await client.list_folders()
    assert protocol.calls[-1] == ("list", '""', '"*"')


@pytest.mark.asyncio
async def test_get_capabilities_refreshes_from_protocol(client, protocol):
    assert not client.has_capability("CREATE-SPECIAL-USE")

    caps = await client.get_capabilities()

    assert protocol.protocol.capability_calls == 1
    assert caps == {"IMAP4REV1", "SPECIAL-USE", "CREATE-SPECIAL-USE"}
    assert client.has_capability("create-special-use")


@pytest.mark.asyncio
async def test_create_folder_adds_use_hint_only_when_supported(client, protocol):
    await client.create_folder("INBOX/Sent", special_use="\\Sent")
    assert protocol.calls[-1] == ("create", '"INBOX/Sent"')

    client._capabilities = frozenset({"CREATE-SPECIAL-USE"})
    await client.create_folder("Sent", special_use="\\Sent")
    assert protocol.calls[-1] == ("create", '"Sent" (USE (\\Sent))')


@pytest.mark.asyncio
async def test_append_passes_flags_and_date(client, protocol):
    when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    await client.append("Sent", b"raw", flags=("\\Seen", "\\Deleted"), date=when)
    assert protocol.calls[-1] == ("append", '"Sent"', "\\Seen \\Deleted", when)


@pytest.mark.asyncio
async def test_append_failure_exposes_trycreate(client, protocol):
    protocol.append_result = response("NO", "[TRYCREATE] Mailbox doesn't exist: Sent")
    with pytest.raises(IMAPCommandError) as excinfo:
        await client.append("Sent", b"raw")
    assert excinfo.value.trycreate


@pytest.mark.asyncio
async def test_lock_serializes_mailbox_selection(client, protocol):
    first = await client.lock_mailbox("INBOX")
    waiter = asyncio.create_task(client.lock_mailbox("Sent"))
    await asyncio.sleep(0)
    assert not waiter.done()

    await first.release()
    second = await waiter
    assert second.path == "Sent"
    await second.release()
    await second.release()


@pytest.mark.asyncio
async def test_failed_select_does_not_keep_lock(client, protocol):
    protocol.select_result = "NO"
    with pytest.raises(IMAPCommandError):
        await client.lock_mailbox("Missing")

    protocol.select_result = "OK"
    lock = await asyncio.wait_for(client.lock_mailbox("INBOX"), timeout=1)
    await lock.release()


@pytest.mark.asyncio
async def test_search_and_delete(client, protocol):
    ids = await client.search_header("Subject", "IMAP Discovery Probe")
    assert ids == ["3", "5"]
    assert protocol.calls[-1] == ("search", ("HEADER", "Subject", '"IMAP Discovery Probe"'), None)

    assert await client.delete_messages(ids) == 2
    assert ("store", ("3,5", "+FLAGS", "(\\Deleted)")) in protocol.calls
    assert protocol.calls[-1] == ("expunge",)
    assert await client.delete_messages([]) == 0


@pytest.mark.asyncio
async def test_close_is_idempotent_and_releases_lock(client, protocol):
    await client.lock_mailbox("INBOX")
    await client.close()
    await client.close()
    assert protocol.calls.count(("logout",)) == 1
    assert not client._lock.locked()


@pytest.mark.asyncio
async def test_commands_require_connection():
    with pytest.raises(RuntimeError, match="Not connected"):
        await IMAPClient().list_folders()
