"""
Catalog Server - Entry Point

Run with: python -m catalog
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

from catalog import __version__
from catalog.config import CatalogConfig, load_config
from catalog.core.errors import ConfigError
from catalog.server import CatalogServer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="catalog",
        description="Catalog Server - record label catalog API with schema-tolerant resolution",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to the TOML config file (default: bundled catalog.toml)",
    )

    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the catalog database (overrides [database] path)",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address to bind to (overrides [web] host)",
    )

    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="HTTP port (overrides [web] port)",
    )

    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create or migrate the canonical catalog schema before serving",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def apply_overrides(config: CatalogConfig, args: argparse.Namespace) -> CatalogConfig:
    """Apply command line overrides on top of the loaded config."""
    if args.db is not None:
        config = dataclasses.replace(config, database=dataclasses.replace(config.database, path=args.db))
    web = config.web
    if args.host is not None:
        web = dataclasses.replace(web, host=args.host)
    if args.port is not None:
        web = dataclasses.replace(web, port=args.port)
    return dataclasses.replace(config, web=web)


async def run_server(config: CatalogConfig, init_schema: bool) -> None:
    """Start and run the catalog server."""
    server = CatalogServer(config, init_schema=init_schema)
    await server.run()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        config = apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    logger.info("Starting Catalog Server...")

    try:
        asyncio.run(run_server(config, init_schema=args.init_schema))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
