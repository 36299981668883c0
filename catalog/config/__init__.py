"""
Configuration management for the catalog service.

Settings are loaded from a TOML file (default: `catalog.toml` next to this
module). Secrets and deployment specifics can be overridden from the
environment:

    CATALOG_DB_PATH   -> [database] path
    CATALOG_REST_URL  -> [rest_proxy] url
    CATALOG_REST_KEY  -> [rest_proxy] api_key
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from catalog.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = CONFIG_DIR / "catalog.toml"


@dataclass
class DatabaseConfig:
    """Primary backend (direct connection)."""

    path: str = "catalog.sqlite3"
    pool_size: int = 5
    timeout: float = 5.0


@dataclass
class RestProxyConfig:
    """Secondary backend (REST proxy). Disabled when `url` is empty."""

    url: str = ""
    api_key: str = ""
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass
class ResolverConfig:
    strategy_timeout: float = 10.0
    batch_size: int = 10
    allow_approximate: bool = True
    heuristic_min_length: int = 4
    label_sibling_limit: int = 10
    sample_limit: int = 5


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class CatalogConfig:
    """Loaded service configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    rest_proxy: RestProxyConfig = field(default_factory=RestProxyConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    web: WebConfig = field(default_factory=WebConfig)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _number(section: Mapping[str, Any], key: str, default: float, *, where: str, minimum: float = 0) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{where}.{key} must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}, got {value!r}")
    return float(value)


def _integer(section: Mapping[str, Any], key: str, default: int, *, where: str, minimum: int = 0) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{where}.{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{where}.{key} must be >= {minimum}, got {value!r}")
    return value


def _string(section: Mapping[str, Any], key: str, default: str, *, where: str) -> str:
    value = section.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{where}.{key} must be a string, got {value!r}")
    return value


def _boolean(section: Mapping[str, Any], key: str, default: bool, *, where: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}.{key} must be true or false, got {value!r}")
    return value


def parse_config(data: Mapping[str, Any], env: Mapping[str, str] | None = None) -> CatalogConfig:
    """
    Build a `CatalogConfig` from parsed TOML data.

    Args:
        data: Parsed TOML document
        env: Environment used for overrides (defaults to `os.environ`)

    Raises:
        ConfigError: a value has the wrong type or range.
    """
    if env is None:
        env = os.environ

    db = _section(data, "database")
    db_defaults = DatabaseConfig()
    database = DatabaseConfig(
        path=env.get("CATALOG_DB_PATH") or _string(db, "path", db_defaults.path, where="database"),
        pool_size=_integer(db, "pool_size", db_defaults.pool_size, where="database", minimum=1),
        timeout=_number(db, "timeout", db_defaults.timeout, where="database"),
    )

    rp = _section(data, "rest_proxy")
    rest_proxy = RestProxyConfig(
        url=env.get("CATALOG_REST_URL") or _string(rp, "url", "", where="rest_proxy"),
        api_key=env.get("CATALOG_REST_KEY") or _string(rp, "api_key", "", where="rest_proxy"),
        timeout=_number(rp, "timeout", RestProxyConfig().timeout, where="rest_proxy"),
    )
    if rest_proxy.enabled and not rest_proxy.url.startswith(("http://", "https://")):
        raise ConfigError(f"rest_proxy.url must be an http(s) URL, got {rest_proxy.url!r}")

    rs = _section(data, "resolver")
    defaults = ResolverConfig()
    resolver = ResolverConfig(
        strategy_timeout=_number(rs, "strategy_timeout", defaults.strategy_timeout, where="resolver"),
        batch_size=_integer(rs, "batch_size", defaults.batch_size, where="resolver", minimum=1),
        allow_approximate=_boolean(rs, "allow_approximate", defaults.allow_approximate, where="resolver"),
        heuristic_min_length=_integer(
            rs, "heuristic_min_length", defaults.heuristic_min_length, where="resolver", minimum=1
        ),
        label_sibling_limit=_integer(
            rs, "label_sibling_limit", defaults.label_sibling_limit, where="resolver", minimum=1
        ),
        sample_limit=_integer(rs, "sample_limit", defaults.sample_limit, where="resolver", minimum=1),
    )

    wb = _section(data, "web")
    web_defaults = WebConfig()
    origins = wb.get("cors_origins", ["*"])
    if not isinstance(origins, list) or not all(isinstance(o, str) for o in origins):
        raise ConfigError(f"web.cors_origins must be a list of strings, got {origins!r}")
    web = WebConfig(
        host=_string(wb, "host", web_defaults.host, where="web"),
        port=_integer(wb, "port", web_defaults.port, where="web", minimum=0),
        cors_origins=list(origins),
    )

    return CatalogConfig(database=database, rest_proxy=rest_proxy, resolver=resolver, web=web)


def load_config(config_path: Path | None = None) -> CatalogConfig:
    """
    Load service configuration from a TOML file.

    Args:
        config_path: Path to the TOML file. If None, uses the default location.

    Returns:
        Loaded CatalogConfig instance.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    logger.debug("Loading config from %s", config_path)

    try:
        with config_path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    return parse_config(data)


# Global singleton instance (lazy loaded)
_config: CatalogConfig | None = None


def get_config() -> CatalogConfig:
    """
    Get the global configuration (lazy loaded singleton).

    Returns:
        The CatalogConfig instance.
    """
    global _config

    if _config is None:
        _config = load_config()

    return _config


def reload_config(config_path: Path | None = None) -> CatalogConfig:
    """
    Force reload of the configuration.

    Returns:
        The newly loaded CatalogConfig instance.
    """
    global _config
    _config = load_config(config_path)
    return _config
