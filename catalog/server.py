"""
Catalog Server - Main Server Module

This module contains the CatalogServer class that wires the resolver
components together and manages the application lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from catalog.config import CatalogConfig
from catalog.core.db.executor import QueryExecutor
from catalog.core.db.functions import catalog_functions
from catalog.core.db.inspector import SchemaInspector
from catalog.core.db.pool import OnConnect, SqlitePool
from catalog.core.health import HealthReporter
from catalog.core.resolver import CatalogResolver
from catalog.core.rest import RestProxyClient
from catalog.web.server import WebServer

logger = logging.getLogger(__name__)


class CatalogServer:
    """
    Main catalog server that coordinates all components.

    The server manages:
    - the primary backend connection pool (built once, shared by every request)
    - the optional REST proxy client (secondary backend)
    - executor, schema inspector, resolver and health reporter
    - the web server exposing the catalog API
    """

    def __init__(
        self,
        config: CatalogConfig,
        *,
        init_schema: bool = False,
        on_connect: OnConnect | None = None,
    ) -> None:
        """
        Initialize the catalog server.

        Args:
            config: Loaded service configuration.
            init_schema: Create/migrate the canonical schema on start.
            on_connect: Per-connection hook for the primary backend. Defaults
                to registering the catalog SQL functions.
        """
        self.config = config
        self.init_schema = init_schema

        db = config.database
        if on_connect is None:
            on_connect = catalog_functions(db.path)
        self.pool = SqlitePool(db.path, size=db.pool_size, on_connect=on_connect)

        self.rest_client: RestProxyClient | None = None
        if config.rest_proxy.enabled:
            self.rest_client = RestProxyClient(
                config.rest_proxy.url,
                config.rest_proxy.api_key,
                timeout=config.rest_proxy.timeout,
            )

        self.executor = QueryExecutor(self.pool, self.rest_client, timeout=db.timeout)
        self.inspector = SchemaInspector(self.pool, timeout=db.timeout)

        rs = config.resolver
        self.resolver = CatalogResolver(
            self.executor,
            self.inspector,
            strategy_timeout=rs.strategy_timeout or None,
            batch_size=rs.batch_size,
            allow_approximate=rs.allow_approximate,
            heuristic_min_length=rs.heuristic_min_length,
            label_sibling_limit=rs.label_sibling_limit,
            sample_limit=rs.sample_limit,
        )
        self.reporter = HealthReporter(self.executor, self.inspector.uncached())

        self.web_server = WebServer(
            self.resolver,
            self.reporter,
            cors_origins=config.web.cors_origins,
        )

        # Server state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

    async def start(self) -> None:
        """Open the backends, then start serving HTTP."""
        logger.info("Starting catalog server (store: %s)", self.pool.db_path)

        self._running = True
        self._shutdown_event = asyncio.Event()

        await self.pool.open()
        if self.init_schema:
            await self.pool.ensure_schema()

        if self.rest_client is not None:
            await self.rest_client.open()
            logger.info("REST proxy fallback enabled: %s", self.rest_client.base_url)
        else:
            logger.info("No REST proxy configured; running without a fallback backend")

        web = self.config.web
        await self.web_server.start(host=web.host, port=web.port)

        logger.info("Catalog server started successfully")

    async def stop(self) -> None:
        """Stop serving, then release the backends."""
        if not self._running:
            return

        logger.info("Stopping catalog server...")
        self._running = False

        # Stop Web server first, then the backends it uses.
        await self.web_server.stop()

        if self.rest_client is not None:
            await self.rest_client.close()

        # Close the pool last, after all components are stopped.
        await self.pool.close()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("Catalog server stopped")

    async def run(self) -> None:
        """
        Run the server until shutdown is requested.

        This method starts all components and waits for a shutdown signal
        (SIGINT or SIGTERM).
        """
        await self.start()

        # SIGINT and SIGTERM both request shutdown
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            if self._shutdown_event:
                self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

        # Wait for shutdown
        if self._shutdown_event:
            await self._shutdown_event.wait()

        await self.stop()

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._running
