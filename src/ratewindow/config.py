"""Configuration file loader for rate-window.

This module provides functionality to load store and limiter configuration from
TOML files, with support for environment variable expansion.
"""

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

from ratewindow.exceptions import ConfigValidationError, RateWindowError
from ratewindow.registry import _registry
from ratewindow.validation import validate_limiter_config

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RATE_WINDOW_CONFIG"
CONFIG_FILE_NAME = "rate-window.toml"

_DEFAULT_VAR_RE = re.compile(r"\$\{([^}:]+):-([^}]*)\}")


# =============================================================================
# Global FastAPI Configuration (loaded from [fastapi] section)
# =============================================================================


class FastAPIConfig:
    """Global configuration for FastAPI integration.

    Loaded from the [fastapi] section in rate-window.toml.

    Attributes:
        trusted_proxy_networks: List of trusted proxy networks in CIDR notation.
            Used by get_client_ip() to decide whether proxy headers are trusted.

    Example TOML:
        [fastapi]
        trusted_proxy_networks = ["10.0.0.0/8", "127.0.0.0/8"]
    """

    def __init__(self) -> None:
        self._trusted_proxy_networks: list[str] | None = None

    @property
    def trusted_proxy_networks(self) -> list[str] | None:
        """Trusted proxy networks from config, or None to use defaults."""
        return self._trusted_proxy_networks

    @trusted_proxy_networks.setter
    def trusted_proxy_networks(self, value: list[str] | None) -> None:
        self._trusted_proxy_networks = value

    def configure(self, trusted_proxy_networks: list[str] | None = None) -> None:
        """Configure FastAPI integration settings."""
        if trusted_proxy_networks is not None:
            self._trusted_proxy_networks = trusted_proxy_networks


_fastapi_config = FastAPIConfig()


def get_fastapi_config() -> FastAPIConfig:
    """Get the global FastAPI configuration."""
    return _fastapi_config


def configure_fastapi(trusted_proxy_networks: list[str] | None = None) -> None:
    """Configure FastAPI integration settings programmatically.

    This is an alternative to the [fastapi] section in rate-window.toml.

    Example:
        >>> configure_fastapi(trusted_proxy_networks=["10.0.0.0/8"])
    """
    _fastapi_config.configure(trusted_proxy_networks=trusted_proxy_networks)


def _convert_scalar(value: str) -> Any:
    """Turn an expanded numeric or boolean string into int/float/bool."""
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        if "." in value or "e" in lowered:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration keys and values.

    Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax (bash-like default values).
    Strings that contained a variable and expand to a number or boolean are
    converted, so ``limit = "${API_LIMIT:-100}"`` yields the int 100.

    Example:
        >>> _expand_env_vars("redis://${REDIS_HOST:-localhost}:6379/0")
        "redis://localhost:6379/0"
        >>> _expand_env_vars("${WINDOW:-60}")
        60
    """
    if isinstance(obj, dict):
        return {
            (_expand_env_vars(key) if isinstance(key, str) else key): _expand_env_vars(value)
            for key, value in obj.items()
        }

    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]

    if isinstance(obj, str) and "$" in obj:
        result = _DEFAULT_VAR_RE.sub(
            lambda match: os.environ.get(match.group(1), match.group(2)), obj
        )
        result = os.path.expandvars(result)
        return _convert_scalar(result)

    return obj


def _validate_config_structure(
    config: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Validate configuration structure and extract stores, limiters and fastapi sections.

    Raises:
        ConfigValidationError: If configuration structure is invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError(
            "Configuration must be a dictionary",
            field="config",
            expected="dict",
            received=type(config).__name__,
        )

    sections = []
    for name in ("stores", "limiters", "fastapi"):
        section = config.get(name, {})
        if not isinstance(section, dict):
            raise ConfigValidationError(
                f"{name} section must be a dictionary",
                field=name,
                expected="dict",
                received=type(section).__name__,
            )
        sections.append(section)

    stores, limiters, fastapi = sections
    return stores, limiters, fastapi


def _load_stores(stores: dict[str, Any], config_path: Path) -> None:
    """Configure all stores from the [stores.*] sections.

    Raises:
        ConfigValidationError: If store configuration is invalid
    """
    logger.info("Loading %d stores from config file %s", len(stores), config_path)

    for store_id, store_config in stores.items():
        if not isinstance(store_config, dict):
            raise ConfigValidationError(
                f"Store '{store_id}' configuration must be a dictionary",
                field=f"stores.{store_id}",
                expected="dict",
                received=type(store_config).__name__,
            )

        engine = store_config.get("engine")
        if not engine:
            raise ConfigValidationError(
                f"Store '{store_id}' missing required field 'engine'",
                field=f"stores.{store_id}.engine",
                expected="engine name",
                received="missing",
            )

        store_kwargs = {k: v for k, v in store_config.items() if k != "engine"}
        try:
            _registry.configure_store(store_id, engine, **store_kwargs)
        except ConfigValidationError as e:
            raise ConfigValidationError(f"Failed to configure store '{store_id}': {e}") from e


def _load_limiters(limiters: dict[str, Any], stores: dict[str, Any], config_path: Path) -> None:
    """Configure all limiters from the [limiters.*] sections.

    Raises:
        ConfigValidationError: If limiter configuration is invalid or
            references a store not defined in the same file
    """
    logger.info("Loading %d limiters from config file %s", len(limiters), config_path)

    for limiter_id, limiter_config in limiters.items():
        if not isinstance(limiter_config, dict):
            raise ConfigValidationError(
                f"Limiter '{limiter_id}' configuration must be a dictionary",
                field=f"limiters.{limiter_id}",
                expected="dict",
                received=type(limiter_config).__name__,
            )

        try:
            validated = validate_limiter_config(limiter_config)
        except ConfigValidationError as e:
            raise ConfigValidationError(f"Failed to validate limiter '{limiter_id}': {e}") from e

        if validated.store not in stores:
            raise ConfigValidationError(
                f"Limiter '{limiter_id}' references unknown store '{validated.store}'. "
                f"Store must be defined in the same TOML file.",
                field=f"limiters.{limiter_id}.store",
                expected=f"one of {list(stores.keys())}",
                received=validated.store,
            )

        _registry.configure_limiter(
            limiter_id,
            validated.store,
            limit=validated.limit,
            window_seconds=validated.window_seconds,
            fail_closed=validated.fail_closed,
            timeout=validated.timeout,
        )


def _load_fastapi(fastapi_config: dict[str, Any], config_path: Path) -> None:
    """Load FastAPI configuration from the [fastapi] section."""
    if not fastapi_config:
        logger.debug("No [fastapi] section in config file %s", config_path)
        return

    trusted_networks = fastapi_config.get("trusted_proxy_networks")
    if trusted_networks is not None:
        if not isinstance(trusted_networks, list):
            raise ConfigValidationError(
                "fastapi.trusted_proxy_networks must be a list of CIDR networks",
                field="fastapi.trusted_proxy_networks",
                expected="list[str]",
                received=type(trusted_networks).__name__,
            )
        _fastapi_config.trusted_proxy_networks = trusted_networks
        logger.info(
            "FastAPI trusted proxy networks configured: %d networks", len(trusted_networks)
        )


def load_config(config_path: str | Path) -> None:
    """Load store and limiter configuration from a TOML file.

    Example TOML:
        [stores.main]
        engine = "redis"
        url = "${REDIS_URL:-redis://localhost:6379/0}"

        [stores.local]
        engine = "memory"
        cleanup_interval = 30.0

        [limiters.api]
        store = "main"
        limit = 100
        window_seconds = 60

        [limiters.login]
        store = "main"
        limit = 5
        window_seconds = 300
        fail_closed = true

        [fastapi]
        trusted_proxy_networks = ["10.0.0.0/8"]

    Args:
        config_path: Path to TOML configuration file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigValidationError: If configuration is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(
            f"Failed to parse TOML file: {e}",
            field="config_file",
            expected="valid TOML",
            received=str(config_path),
        ) from e

    config = _expand_env_vars(config)

    stores, limiters, fastapi = _validate_config_structure(config)

    # Stores first: limiters reference them
    _load_stores(stores, config_path)
    _load_limiters(limiters, stores, config_path)
    _load_fastapi(fastapi, config_path)

    logger.info(
        "Configuration loaded successfully: %d stores, %d limiters",
        len(stores),
        len(limiters),
    )


def _auto_load_config() -> None:
    """Automatically load configuration from standard locations.

    Searches for rate-window.toml in the following order:
    1. Environment variable RATE_WINDOW_CONFIG
    2. ./rate-window.toml (current directory)
    3. ./config/rate-window.toml (config subdirectory)

    Missing files are silent; a file that fails to load is logged as a warning.
    Called automatically when ratewindow is imported.
    """
    env_config = os.getenv(CONFIG_ENV_VAR)
    if env_config:
        config_path = Path(env_config)
        if config_path.exists():
            try:
                load_config(config_path)
                logger.debug("Configuration auto-loaded from %s: %s", CONFIG_ENV_VAR, config_path)
                return
            except (RateWindowError, OSError) as e:
                logger.warning(
                    "Failed to load config from %s (%s): %s", CONFIG_ENV_VAR, config_path, e
                )
        else:
            logger.warning("%s points to non-existent file: %s", CONFIG_ENV_VAR, config_path)

    search_paths = [
        Path.cwd() / CONFIG_FILE_NAME,
        Path.cwd() / "config" / CONFIG_FILE_NAME,
    ]

    for config_path in search_paths:
        if config_path.exists():
            try:
                load_config(config_path)
                logger.debug("Configuration auto-loaded from: %s", config_path)
            except (RateWindowError, OSError) as e:
                logger.warning("Failed to auto-load config from %s: %s", config_path, e)
            # Don't try other paths once a file was found
            return

    logger.debug(
        "No %s found in standard locations. Using programmatic configuration.", CONFIG_FILE_NAME
    )
