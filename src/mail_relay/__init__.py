# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HTTP-to-SMTP relay with optional IMAP "Sent" copy.

This package provides a small relay service with features including:

- A FastAPI ``POST /send`` endpoint validating and forwarding email requests
- SMTP delivery through an explicitly owned aiosmtplib transport
- Best-effort append of every sent message to the account's Sent mailbox
- Sent-folder discovery over IMAP (SPECIAL-USE, name matching, creation)

Example:
    Basic usage with the FastAPI application::

        from mail_relay.config_loader import load_settings
        from mail_relay.core import MailRelay
        from mail_relay.api import create_app

        relay = MailRelay(load_settings())
        app = create_app(relay)
"""

__version__ = "0.1.0"
