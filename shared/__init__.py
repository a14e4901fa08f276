"""Shared modules for the poll-and-publish add-ons.

This package provides common functionality used across all add-ons:

- addon_base: Signal handling, logging setup, main loop utilities
- backoff: Consecutive failure tracking with a lockout-prevention guard
- config_loader: Configuration loading from JSON/environment
- ha_api: Home Assistant REST API client (services, calendars)
- ha_mqtt_discovery: MQTT Discovery for entities with unique_id
- mqtt_setup: MQTT client initialization helper
- poller: Poll-detect-publish cycle with single-flight guard
"""

from .addon_base import (
    parse_addon_args,
    parse_log_level,
    run_addon_loop,
    set_log_level,
    setup_logging,
    setup_signal_handlers,
    sleep_with_shutdown_check,
)
from .backoff import BackoffDecision, BackoffState, FailureTracker
from .config_loader import ConfigError, get_env_with_fallback, get_run_once_mode, load_addon_config
from .ha_api import HomeAssistantApi, get_ha_api_config
from .poller import Change, PollState, Poller, SingleFlight

__all__ = [
    # addon_base
    'parse_addon_args',
    'parse_log_level',
    'set_log_level',
    'setup_logging',
    'setup_signal_handlers',
    'sleep_with_shutdown_check',
    'run_addon_loop',
    # backoff
    'BackoffDecision',
    'BackoffState',
    'FailureTracker',
    # config_loader
    'ConfigError',
    'load_addon_config',
    'get_env_with_fallback',
    'get_run_once_mode',
    # ha_api
    'HomeAssistantApi',
    'get_ha_api_config',
    # poller
    'Change',
    'PollState',
    'Poller',
    'SingleFlight',
]
