# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the mail relay.

Settings are read from an INI file (default ``config.ini``, overridable with
``MAIL_RELAY_CONFIG``) with environment variables as fallbacks. A value set in
the INI file wins; otherwise the environment variable is used; otherwise the
built-in default applies.

Example:
    Configuration file format (config.ini)::

        [smtp]
        host = smtp.ionos.com
        port = 587
        secure = false
        user = relay@example.com
        password = secret
        from_email = relay@example.com

        [imap]
        host = imap.ionos.com
        port = 993
        secure = true
        mailbox = Sent
        save_sent_copy = true

        [rate_limit]
        window_ms = 60000
        max = 30

        [server]
        host = 0.0.0.0
        port = 10000
        environment = production

        [logging]
        level = INFO

    Environment variables::

        SMTP_HOST, SMTP_PORT, SMTP_SECURE, SMTP_USER, SMTP_PASS, FROM_EMAIL,
        SMTP_TIMEOUT, SMTP_VERIFY_ON_START,
        IMAP_HOST, IMAP_PORT, IMAP_SECURE, IMAP_USER, IMAP_PASS, IMAP_MAILBOX,
        IMAP_TIMEOUT, SAVE_SENT_COPY,
        RATE_LIMIT_WINDOW_MS, RATE_LIMIT_MAX,
        HOST, PORT, ENVIRONMENT, LOG_LEVEL

    ``IMAP_USER`` and ``IMAP_PASS`` fall back to the SMTP credentials, since
    most providers use the same account for both protocols.
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .logger import get_logger

logger = get_logger("ConfigLoader")

DEFAULT_CONFIG_PATH = "config.ini"


@dataclass
class SmtpConfig:
    """Outbound SMTP submission settings.

    Attributes:
        host: SMTP server hostname.
        port: SMTP server port (587 for STARTTLS, 465 for implicit TLS).
        secure: Use implicit TLS. When False, STARTTLS is required.
        user: Username for SMTP authentication.
        password: Password for SMTP authentication.
        from_email: Address placed in the From header of every message.
        timeout: Connect/command timeout in seconds.
        verify_on_start: Verify the connection when the service starts.
    """

    host: str = "smtp.ionos.com"
    port: int = 587
    secure: bool = False
    user: str | None = None
    password: str | None = None
    from_email: str | None = None
    timeout: float = 10.0
    verify_on_start: bool = True


@dataclass
class ImapConfig:
    """IMAP settings used for the Sent copy and for folder discovery.

    Attributes:
        host: IMAP server hostname.
        port: IMAP server port.
        secure: Connect over implicit TLS.
        user: IMAP username (defaults to the SMTP user).
        password: IMAP password (defaults to the SMTP password).
        mailbox: Preferred mailbox for Sent copies.
        timeout: Bound in seconds for a single IMAP attempt.
        save_sent_copy: Append a copy of every sent message over IMAP.
    """

    host: str = "imap.ionos.com"
    port: int = 993
    secure: bool = True
    user: str | None = None
    password: str | None = None
    mailbox: str = "Sent"
    timeout: float = 30.0
    save_sent_copy: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)


@dataclass
class RelaySettings:
    """Complete runtime configuration of the relay."""

    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    imap: ImapConfig = field(default_factory=ImapConfig)
    rate_limit_window_ms: int = 60000
    rate_limit_max: int = 30
    http_host: str = "0.0.0.0"
    http_port: int = 10000
    environment: str = "production"
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def load_settings(
    config_path: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> RelaySettings:
    """Load relay settings from an INI file with environment fallbacks.

    Args:
        config_path: Path to the INI file. Defaults to ``MAIL_RELAY_CONFIG``
            or ``config.ini``. A missing file is not an error.
        environ: Environment mapping, ``os.environ`` when omitted.

    Returns:
        A populated :class:`RelaySettings`.

    Raises:
        ValueError: If a numeric option cannot be parsed.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("MAIL_RELAY_CONFIG", DEFAULT_CONFIG_PATH))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
        logger.debug("Loaded configuration from %s", path)

    def get(section: str, option: str, env_name: str, default: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        value = env.get(env_name)
        if value is None or value == "":
            return default
        return value

    def get_int(section: str, option: str, env_name: str, default: int) -> int:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ValueError(f"Invalid integer for {section}.{option}: {value!r}") from exc

    def get_float(section: str, option: str, env_name: str, default: float) -> float:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f"Invalid number for {section}.{option}: {value!r}") from exc

    def get_bool(section: str, option: str, env_name: str, default: bool) -> bool:
        return _parse_bool(get(section, option, env_name), default)

    smtp = SmtpConfig(
        host=get("smtp", "host", "SMTP_HOST", "smtp.ionos.com") or "smtp.ionos.com",
        port=get_int("smtp", "port", "SMTP_PORT", 587),
        secure=get_bool("smtp", "secure", "SMTP_SECURE", False),
        user=get("smtp", "user", "SMTP_USER"),
        password=get("smtp", "password", "SMTP_PASS"),
        from_email=get("smtp", "from_email", "FROM_EMAIL"),
        timeout=get_float("smtp", "timeout", "SMTP_TIMEOUT", 10.0),
        verify_on_start=get_bool("smtp", "verify_on_start", "SMTP_VERIFY_ON_START", True),
    )
    imap = ImapConfig(
        host=get("imap", "host", "IMAP_HOST", "imap.ionos.com") or "imap.ionos.com",
        port=get_int("imap", "port", "IMAP_PORT", 993),
        secure=get_bool("imap", "secure", "IMAP_SECURE", True),
        user=get("imap", "user", "IMAP_USER") or smtp.user,
        password=get("imap", "password", "IMAP_PASS") or smtp.password,
        mailbox=get("imap", "mailbox", "IMAP_MAILBOX", "Sent") or "Sent",
        timeout=get_float("imap", "timeout", "IMAP_TIMEOUT", 30.0),
        save_sent_copy=get_bool("imap", "save_sent_copy", "SAVE_SENT_COPY", False),
    )
    settings = RelaySettings(
        smtp=smtp,
        imap=imap,
        rate_limit_window_ms=get_int("rate_limit", "window_ms", "RATE_LIMIT_WINDOW_MS", 60000),
        rate_limit_max=get_int("rate_limit", "max", "RATE_LIMIT_MAX", 30),
        http_host=get("server", "host", "HOST", "0.0.0.0") or "0.0.0.0",
        http_port=get_int("server", "port", "PORT", 10000),
        environment=(get("server", "environment", "ENVIRONMENT", "production") or "production").strip(),
        log_level=(get("logging", "level", "LOG_LEVEL", "INFO") or "INFO").strip().upper(),
    )

    if not smtp.from_email:
        logger.warning("FROM_EMAIL is not configured; outgoing messages will use the SMTP user")
    return settings
