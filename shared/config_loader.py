"""Configuration loading utilities for the add-ons.

This module provides standardized configuration loading from the
/data/options.json file (HA Supervisor pattern) with fallback to
environment variables for local development and env-configured add-ons.

Usage:
    from shared.config_loader import load_addon_config

    config = load_addon_config(
        required_fields=['azure_tenant_id', 'azure_client_id'],
        defaults={'check_interval': 300, 'ipv4_enabled': True}
    )
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = '/data/options.json'


class ConfigError(ValueError):
    """Raised when required configuration is missing or invalid."""


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def load_addon_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    defaults: Optional[Dict[str, Any]] = None,
    required_fields: Optional[List[str]] = None,
    env_prefix: str = '',
) -> Dict[str, Any]:
    """Load add-on configuration from JSON file or environment.

    Priority order:
    1. JSON config file (if exists)
    2. Environment variables (as fallback)
    3. Default values

    Args:
        config_path: Path to JSON config file (HA Supervisor pattern)
        defaults: Default values for optional fields
        required_fields: List of required field names
        env_prefix: Prefix for environment variables (e.g., 'ES_' for ES_EMAIL)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If required fields are missing from both config and environment
            or the config file is not valid JSON
    """
    defaults = defaults or {}
    required_fields = required_fields or []
    config: Dict[str, Any] = {}

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        logger.info("Loaded configuration from %s", config_path)
    else:
        logger.warning("Config file %s not found, using environment/defaults", config_path)

    missing = []
    for field in required_fields:
        if _is_missing(config.get(field)):
            env_key = f"{env_prefix}{field}".upper()
            env_value = os.getenv(env_key)
            if not _is_missing(env_value):
                config[field] = env_value
                logger.debug("Loaded %s from environment variable %s", field, env_key)
            elif field in defaults and not _is_missing(defaults[field]):
                config[field] = defaults[field]
            else:
                missing.append(f"{field} (env: {env_key})")

    if missing:
        raise ConfigError("Required config field missing: " + ", ".join(missing))

    for key, value in defaults.items():
        if key not in config or config[key] is None:
            env_key = f"{env_prefix}{key}".upper()
            env_value = os.getenv(env_key)
            if env_value is not None:
                config[key] = _cast_env_value(env_value, type(value))
            else:
                config[key] = value

    return config


def _cast_env_value(value: str, target_type: type) -> Any:
    """Cast environment variable string to target type."""
    if target_type == bool:
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    elif target_type == int:
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"Expected an integer, got {value!r}") from e
    elif target_type == float:
        try:
            return float(value)
        except ValueError as e:
            raise ConfigError(f"Expected a number, got {value!r}") from e
    elif target_type == list:
        return [item.strip() for item in value.split(',') if item.strip()]
    else:
        return value


def get_env_with_fallback(
    key: str,
    fallback: Any = '',
    cast_type: Optional[type] = None
) -> Any:
    """Get environment variable with fallback and optional type casting.

    Args:
        key: Environment variable name
        fallback: Fallback value if not set
        cast_type: Type to cast to (default: infer from fallback type)

    Returns:
        Environment value or fallback, optionally cast to specified type
    """
    value = os.getenv(key)

    if value is None:
        return fallback

    if cast_type is None:
        cast_type = type(fallback) if fallback is not None else str

    return _cast_env_value(value, cast_type)


def get_run_once_mode() -> bool:
    """Check if add-on should run once and exit.

    Used for testing/debugging. Set RUN_ONCE=1 or RUN_ONCE=true in environment.
    """
    return os.getenv('RUN_ONCE', '').lower() in ('1', 'true', 'yes')
