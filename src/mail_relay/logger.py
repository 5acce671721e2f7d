# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the mail relay.

The actual logging setup (level, handlers, format) is done once via
:func:`configure_logging` in the entry point; modules only ask for named
loggers.

Example:
    Typical usage in a module::

        from mail_relay.logger import get_logger

        logger = get_logger("MailRelay")
        logger.info("Email sent")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "MailRelay") -> logging.Logger:
    """Retrieve a logger instance.

    Handlers and formatters are not configured here; that responsibility lies
    with the application entry point.

    Args:
        name: The logger name. Defaults to "MailRelay".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the process.

    ``force=True`` replaces handlers installed by earlier calls so that
    running under uvicorn or the CLI does not duplicate output.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=True,
    )


def mask_user(user: str | None) -> str:
    """Return a log-safe representation of an account name."""
    if not user:
        return "undefined"
    return f"{user[:3]}***"
