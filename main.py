from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from mail_relay.api import create_app
from mail_relay.config_loader import load_settings
from mail_relay.core import MailRelay
from mail_relay.logger import configure_logging


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)
    # Create the relay but don't start it yet - let uvicorn handle the event loop
    relay = MailRelay(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await relay.start()
        try:
            yield
        finally:
            await relay.stop()

    app = create_app(relay, settings=settings, lifespan=lifespan)

    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
