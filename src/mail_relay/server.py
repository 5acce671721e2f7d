# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

This module provides a pre-configured FastAPI application that reads its
settings from ``config.ini`` (or ``MAIL_RELAY_CONFIG``) and the environment
and starts the :class:`~mail_relay.core.MailRelay` with the application.

Usage:
    uvicorn mail_relay.server:app --host 0.0.0.0 --port 10000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config_loader import load_settings
from .core import MailRelay
from .logger import configure_logging

_settings = load_settings()
configure_logging(_settings.log_level)
_logger = logging.getLogger(__name__)

_core = MailRelay(_settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler - starts and stops the relay.

    A failed SMTP verification aborts startup so that a misconfigured relay
    never accepts requests.
    """
    _logger.info("Starting mail relay service...")
    await _core.start()
    _logger.info("Mail relay service started on environment %s", _settings.environment)

    try:
        yield
    finally:
        _logger.info("Stopping mail relay service...")
        await _core.stop()
        _logger.info("Mail relay service stopped")


app = create_app(_core, settings=_settings, lifespan=lifespan)
