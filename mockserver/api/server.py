"""
FastAPI server for the mock server control API

Provides REST API for:
- Starting, inspecting and cancelling mock sessions
- Listener pool status
- Managing and checking mock scripts
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mockserver.api.routes import ROUTERS
from mockserver.config import settings
from mockserver.engine.mock_server import mock_server
from mockserver.logging import setup_logging

setup_logging("mockserver-api")
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the listener pool for the life of the API process."""
    mock_server.startup()
    try:
        yield
    finally:
        await mock_server.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Scripted TCP Mock Server",
    description="Plays back canned TCP conversations for integration tests",
    version="0.1.0",
    lifespan=lifespan,
)

for router in ROUTERS:
    app.include_router(router)


@app.get("/")
async def root():
    return {
        "service": "Scripted TCP Mock Server",
        "version": "0.1.0",
        "status": "operational" if mock_server.running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(
        "starting_mock_server_api",
        host=settings.api_host,
        port=settings.api_port,
    )

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )
