# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Discovery of the account's real Sent mailbox.

The resolver never guesses a folder blindly. It only accepts a folder that
the server marks as ``\\Sent`` through SPECIAL-USE (RFC 6154), a folder whose
name matches a well-known Sent name exactly (case-insensitive), or a folder
it has just created. The chosen folder is then validated by appending a
disposable probe message.

The procedure is an ordered table of ``(name, predicate, action)`` steps
evaluated in priority order over a shared :class:`DiscoveryState`:

1. ``special-use``: ``LIST (SPECIAL-USE)`` and pick the ``\\Sent`` folder
2. ``list``: list every folder and detect the hierarchy delimiter
3. ``name-match``: match localized candidate names against the listing
4. ``create``: create ``INBOX<d>Sent``, ``INBOX<d>Sent Items`` or ``Sent``
5. ``probe``: validate with a probe APPEND (one TRYCREATE recovery)

Example:
    Resolving the Sent folder::

        resolver = SentFolderResolver(settings.imap)
        result = await resolver.resolve()
        print(result.sent_path, result.delimiter, result.created)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from email.utils import formatdate

from ..config_loader import ImapConfig
from ..logger import get_logger, mask_user
from .client import IMAPClient, IMAPCommandError, MailboxDescriptor, describe_error

SENT_FLAG = "\\Sent"
PROBE_SUBJECT = "IMAP Discovery Probe - Safe to Delete"
PROBE_SEARCH_TEXT = "IMAP Discovery Probe"
PROBE_FLAGS = ("\\Seen", "\\Deleted")
DEFAULT_DELIMITER = "/"


class SentFolderDiscoveryError(RuntimeError):
    """Raised when no Sent folder could be found, created or validated."""


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one discovery run."""

    sent_path: str
    delimiter: str
    created: bool = False


@dataclass
class DiscoveryState:
    """Mutable state shared by the discovery steps of a single run."""

    folders: list[MailboxDescriptor] = field(default_factory=list)
    delimiter: str = DEFAULT_DELIMITER
    sent: MailboxDescriptor | None = None
    created: bool = False

    @property
    def unresolved(self) -> bool:
        return self.sent is None


def detect_delimiter(paths: Iterable[str]) -> str:
    """Return the separator of the first nested path, ``/`` if none is nested."""
    for path in paths:
        if "/" in path:
            return "/"
        if "." in path:
            return "."
    return DEFAULT_DELIMITER


def name_candidates(delimiter: str) -> list[str]:
    """Well-known Sent folder names, in matching priority order."""
    return [
        "Sent",
        "Sent Items",
        "Sent Messages",
        f"INBOX{delimiter}Sent",
        f"INBOX{delimiter}Sent Items",
        "Enviados",
        "Elementos enviados",
        "Gesendet",
        "Gesendete Elemente",
        "Envoyés",
        "Éléments envoyés",
    ]


def creation_candidates(delimiter: str) -> list[str]:
    """Paths tried, in order, when the folder has to be created."""
    return [f"INBOX{delimiter}Sent", f"INBOX{delimiter}Sent Items", "Sent"]


Step = Callable[[IMAPClient, DiscoveryState], Awaitable[None]]
Predicate = Callable[[DiscoveryState], bool]


def _always(_state: DiscoveryState) -> bool:
    return True


def _unresolved(state: DiscoveryState) -> bool:
    return state.unresolved


class SentFolderResolver:
    """Find or create the real Sent folder of an IMAP account.

    Attributes:
        config: IMAP connection settings.
        logger: Logger receiving ``[IMAP DISCOVERY]`` progress lines.
    """

    def __init__(
        self,
        config: ImapConfig,
        session_factory: Callable[[], IMAPClient] | None = None,
        logger=None,
    ):
        self.config = config
        self.logger = logger or get_logger("SentFolderResolver")
        self._session_factory = session_factory or (
            lambda: IMAPClient(logger=self.logger, timeout=config.timeout)
        )

    @property
    def steps(self) -> list[tuple[str, Predicate, Step]]:
        return [
            ("special-use", _unresolved, self.find_by_special_use),
            ("list", _always, self.list_all),
            ("name-match", _unresolved, self.find_by_name),
            ("create", _unresolved, self.create_sent_folder),
            ("probe", _always, self.probe),
        ]

    async def resolve(self) -> ResolutionResult:
        """Run the discovery and return the validated Sent folder.

        The session is closed on every exit path.

        Raises:
            SentFolderDiscoveryError: If credentials are missing, the server
                cannot be reached, or no folder can be found and validated.
        """
        cfg = self.config
        if not cfg.has_credentials:
            raise SentFolderDiscoveryError("IMAP credentials missing (IMAP_USER/IMAP_PASS or SMTP_USER/SMTP_PASS)")

        self.logger.info(
            "[IMAP DISCOVERY] Connecting to %s:%d (secure=%s, user=%s)",
            cfg.host, cfg.port, cfg.secure, mask_user(cfg.user),
        )
        client = self._session_factory()
        try:
            try:
                await client.connect(cfg.host, cfg.port, cfg.user, cfg.password, use_ssl=cfg.secure)
            except Exception as exc:
                raise SentFolderDiscoveryError(f"IMAP connection failed: {describe_error(exc)}") from exc

            await self.warm_up(client)
            state = DiscoveryState()
            for name, predicate, step in self.steps:
                if predicate(state):
                    self.logger.debug("[IMAP DISCOVERY] Running step %s", name)
                    await step(client, state)

            if state.sent is None:
                raise SentFolderDiscoveryError("No Sent folder could be resolved")
            result = ResolutionResult(state.sent.path, state.delimiter, state.created)
            self.logger.info(
                "[IMAP DISCOVERY] Sent folder: %s (delimiter=%r, %s)",
                result.sent_path, result.delimiter, "created" if result.created else "existing",
            )
            return result
        except SentFolderDiscoveryError as exc:
            self.logger.error("[IMAP DISCOVERY] Discovery failed: %s", exc)
            raise
        finally:
            await client.close()

    async def warm_up(self, client: IMAPClient) -> None:
        """Lock and release INBOX to force login and capability negotiation."""
        try:
            lock = await client.lock_mailbox("INBOX")
            await lock.release()
            capabilities = await client.get_capabilities()
            self.logger.debug("[IMAP DISCOVERY] Server capabilities: %s", " ".join(sorted(capabilities)))
        except Exception as exc:
            self.logger.info("[IMAP DISCOVERY] INBOX warm-up failed (not critical): %s", exc)

    async def find_by_special_use(self, client: IMAPClient, state: DiscoveryState) -> None:
        try:
            special = await client.list_folders(special_use=True)
        except Exception as exc:
            self.logger.info("[IMAP DISCOVERY] SPECIAL-USE not supported or failed: %s", exc)
            return
        sent = [mb for mb in special if mb.is_sent]
        if len(sent) > 1:
            self.logger.warning(
                "[IMAP DISCOVERY] %d folders marked \\Sent, using the first: %s",
                len(sent), ", ".join(mb.path for mb in sent),
            )
        if sent:
            state.sent = sent[0]
            self.logger.info("[IMAP DISCOVERY] Sent folder found via SPECIAL-USE: %s", state.sent.path)

    async def list_all(self, client: IMAPClient, state: DiscoveryState) -> None:
        try:
            state.folders = await client.list_folders()
        except Exception as exc:
            raise SentFolderDiscoveryError(f"LIST failed: {describe_error(exc)}") from exc
        state.delimiter = detect_delimiter(mb.path for mb in state.folders)
        self.logger.debug(
            "[IMAP DISCOVERY] %d folders, delimiter %r: %s",
            len(state.folders), state.delimiter, ", ".join(mb.path for mb in state.folders),
        )

    async def find_by_name(self, client: IMAPClient, state: DiscoveryState) -> None:
        by_path = {mb.path.lower(): mb for mb in state.folders}
        for candidate in name_candidates(state.delimiter):
            hit = by_path.get(candidate.lower())
            if hit is not None:
                state.sent = hit
                self.logger.info("[IMAP DISCOVERY] Sent folder found by exact name: %s", hit.path)
                return

    async def create_sent_folder(self, client: IMAPClient, state: DiscoveryState) -> None:
        errors: list[str] = []
        for path in creation_candidates(state.delimiter):
            try:
                self.logger.info("[IMAP DISCOVERY] Creating folder %s", path)
                await client.create_folder(path, special_use=SENT_FLAG)
                refreshed = await client.list_folders()
            except Exception as exc:
                self.logger.info("[IMAP DISCOVERY] Could not create %s: %s", path, describe_error(exc))
                errors.append(f"{path}: {describe_error(exc)}")
                continue
            state.folders = refreshed
            match = next((mb for mb in refreshed if mb.path == path), None)
            if match is not None:
                state.sent = match
                state.created = True
                return
            errors.append(f"{path}: created but missing from LIST")
        raise SentFolderDiscoveryError(
            "Could not find or create a Sent folder after all attempts: " + "; ".join(errors)
        )

    def build_probe(self) -> bytes:
        user = self.config.user or "probe@localhost"
        return (
            f"From: {user}\r\n"
            f"To: {user}\r\n"
            f"Subject: {PROBE_SUBJECT}\r\n"
            f"Date: {formatdate(usegmt=True)}\r\n"
            "\r\n"
            "This is a test message for IMAP discovery. Safe to delete.\r\n"
        ).encode("utf-8")

    async def _append_probe(self, client: IMAPClient, path: str) -> None:
        await asyncio.wait_for(
            client.append(path, self.build_probe(), flags=PROBE_FLAGS),
            timeout=self.config.timeout,
        )

    async def probe(self, client: IMAPClient, state: DiscoveryState) -> None:
        """Validate write access with a disposable APPEND, then clean it up."""
        if state.sent is None:
            raise SentFolderDiscoveryError("No Sent folder to validate")
        path = state.sent.path
        try:
            await self._append_probe(client, path)
        except IMAPCommandError as exc:
            if not exc.trycreate:
                raise SentFolderDiscoveryError(f"Probe APPEND to {path} failed: {describe_error(exc)}") from exc
            self.logger.info("[IMAP DISCOVERY] Server answered TRYCREATE for %s, creating and retrying", path)
            try:
                await client.create_folder(path, special_use=SENT_FLAG)
                await self._append_probe(client, path)
            except Exception as retry_exc:
                raise SentFolderDiscoveryError(
                    f"Probe APPEND to {path} failed even after TRYCREATE: {describe_error(retry_exc)}"
                ) from retry_exc
            state.created = True
        except Exception as exc:
            raise SentFolderDiscoveryError(f"Probe APPEND to {path} failed: {describe_error(exc)}") from exc

        self.logger.info("[IMAP DISCOVERY] Probe APPEND to %s succeeded", path)
        await self.cleanup_probe(client, path)

    async def cleanup_probe(self, client: IMAPClient, path: str) -> None:
        try:
            lock = await client.lock_mailbox(path)
            try:
                ids = await client.search_header("Subject", PROBE_SEARCH_TEXT)
                if ids:
                    await client.delete_messages(ids)
                    self.logger.info("[IMAP DISCOVERY] Probe message removed")
            finally:
                await lock.release()
        except Exception as exc:
            self.logger.warning("[IMAP DISCOVERY] Could not remove probe message (not critical): %s", exc)


__all__ = [
    "DiscoveryState",
    "ResolutionResult",
    "SentFolderDiscoveryError",
    "SentFolderResolver",
    "creation_candidates",
    "detect_delimiter",
    "name_candidates",
]
