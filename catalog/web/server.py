"""
Web Server Module for the catalog service.

This module provides the WebServer class that creates and manages the
FastAPI application, registers all routes, and serves it with uvicorn.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catalog import __version__
from catalog.web.routes.api import register_api_routes

if TYPE_CHECKING:
    from catalog.core.health import HealthReporter
    from catalog.core.resolver import CatalogResolver

logger = logging.getLogger(__name__)


class WebServer:
    """
    FastAPI-based web server for the catalog API.

    Args:
        resolver: CatalogResolver answering catalog lookups
        reporter: Optional HealthReporter for /api/diagnostic
        cors_origins: Origins allowed by the CORS middleware
    """

    def __init__(
        self,
        resolver: CatalogResolver,
        reporter: HealthReporter | None = None,
        cors_origins: Sequence[str] = ("*",),
    ) -> None:
        self.resolver = resolver
        self.reporter = reporter

        # Create FastAPI app
        self.app = FastAPI(
            title="Catalog",
            description="Record label catalog API",
            version=__version__,
        )

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_credentials="*" not in cors_origins,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
        )

        # Server state
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._host = "0.0.0.0"
        self._port = 8000

        # Register routes
        self._register_routes()

    def _register_routes(self) -> None:
        """Register all routes with the FastAPI app."""

        # Health check
        @self.app.get("/health")
        async def health_check() -> dict[str, str]:
            """Health check endpoint."""
            return {"status": "ok", "server": "catalog"}

        register_api_routes(self.app, resolver=self.resolver, reporter=self.reporter)

    async def start(self, host: str = "0.0.0.0", port: int = 8000) -> None:
        """
        Start the web server.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        # Serve in the background; stop() asks uvicorn to exit.
        self._task = asyncio.create_task(self._server.serve())

        logger.info("Web server started on http://%s:%d", host, port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None

        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except TimeoutError:
                logger.warning("Web server did not stop within 5s, cancelling")
                self._task.cancel()
            self._task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
