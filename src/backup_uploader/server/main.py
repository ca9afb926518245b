"""
FastAPI server for Backup Uploader.

Accepts upload actions over HTTP and runs them one at a time in the background.
"""

import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .. import __version__
from ..core.action_queue import ActionQueue, QueueConsumer
from ..core.dispatch import dispatch
from ..core.models import DEFAULT_CONFIG_FILE, HealthCheckResponse, Settings
from .routes import router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, queue: Optional[ActionQueue] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Backup Uploader API",
        description="""
        Queue uploads of backup exports to Dropbox and Google Drive.

        Actions are run one at a time, in the order they were queued. Poll
        `GET /api/v1/actions` to follow progress.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings or Settings()
    app.state.queue = queue or ActionQueue()

    # Include API routes
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
    async def health_check() -> HealthCheckResponse:
        """Health check endpoint."""
        return HealthCheckResponse(status="healthy", version=__version__)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Backup Uploader API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "openapi": "/openapi.json",
        }

    return app


def main() -> None:
    """Main entry point for the server."""
    import argparse

    from ..cli.main import add_file_logging, setup_logging

    parser = argparse.ArgumentParser(description="Backup Uploader API Server")
    parser.add_argument(
        "--config",
        default=os.getenv("BACKUP_UPLOADER_CONFIG", DEFAULT_CONFIG_FILE),
        help="Config file path",
    )
    parser.add_argument("--host", help="Host to bind to (default: from listen_addr)")
    parser.add_argument("--port", type=int, help="Port to bind to (default: from listen_addr)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    setup_logging(args.verbose)
    settings = Settings.load(args.config)
    add_file_logging(settings.startup.log_path)

    queue = ActionQueue()
    consumer = QueueConsumer(queue, settings, dispatch)
    consumer.start()

    app = create_app(settings, queue)

    host = args.host or settings.startup.host
    port = args.port or settings.startup.port
    logger.info(f"Listening on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        consumer.stop(timeout=5.0)


if __name__ == "__main__":
    main()
