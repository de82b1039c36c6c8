"""
nfctool: MIFARE Classic / Ultralight multi-tool.

FastAPI backend exposing the console commands over HTTP:
- Tag scanning across ISO 14443A, ISO 14443B and FeliCa
- Memory dumps and known-key audits for MIFARE Classic
- NDEF decoding and URL / Text record writing
- Clone buffer capture and apply
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from nfctool.api import console, tags
from nfctool.console import CommandDispatcher
from nfctool.reader.base import Reader
from nfctool.reader.factory import open_reader

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(reader: Optional[Reader] = None) -> FastAPI:
    """Build the application; the configured reader backend is opened on startup unless given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting nfctool...")
        active = reader if reader is not None else open_reader()
        app.state.dispatcher = CommandDispatcher(active)
        yield
        logger.info("Shutting down nfctool")
        active.close()

    app = FastAPI(
        title="nfctool",
        description="MIFARE Classic / Ultralight multi-tool",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(tags.router)
    app.include_router(console.router)
    return app


app = create_app()
