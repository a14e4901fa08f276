"""Base framework for the poll-and-publish add-ons.

This module provides common functionality for graceful shutdown,
logging setup, and the main loop used by every add-on.

Usage:
    from shared.addon_base import set_log_level, setup_logging, setup_signal_handlers, run_addon_loop

    setup_logging()
    set_log_level(parse_log_level(config['log_level']))
    shutdown_event = setup_signal_handlers()
    run_addon_loop(service.run_cycle, 300, shutdown_event)
"""

import argparse
import logging
import os
import signal
import threading
import time
from logging.handlers import RotatingFileHandler
from typing import Callable, List, Optional

from .config_loader import DEFAULT_CONFIG_PATH, get_run_once_mode

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_LOG_LEVELS = {
    'trace': logging.DEBUG,
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'notice': logging.INFO,
    'warning': logging.WARNING,
    'warn': logging.WARNING,
    'error': logging.ERROR,
    'fatal': logging.CRITICAL,
}


def parse_log_level(value: Optional[str], default: int = logging.INFO) -> int:
    """Map an add-on ``log_level`` option to a logging level.

    Unknown or empty values fall back to ``default``.
    """
    if not value:
        return default
    return _LOG_LEVELS.get(str(value).strip().lower(), default)


def setup_logging(
    level: int = logging.INFO,
    name: Optional[str] = None,
    log_dir: Optional[str] = "/data/logs",
) -> logging.Logger:
    """Configure standard logging format for add-ons.

    Logs to the console (for Docker/Supervisor) and, when ``log_dir`` is
    writable, to a rotating file in the persistent data directory.

    Args:
        level: Logging level (default: INFO)
        name: Logger name (default: None for root logger)
        log_dir: Directory for log files, None disables file logging

    Returns:
        Configured logger instance
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    logger = logging.getLogger(name)
    if not log_dir:
        return logger

    try:
        os.makedirs(log_dir, exist_ok=True)
        log_name = (name or "addon").replace(".", "_")
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, f"{log_name}.log"),
            maxBytes=2 * 1024 * 1024,  # 2 MB per file
            backupCount=3,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)
    except OSError:
        # File logging is optional, console output is enough
        logger.debug("Could not set up file logging in %s", log_dir)

    return logger


def set_log_level(level: int, name: Optional[str] = None) -> None:
    """Apply the configured level to the loggers and handlers from setup_logging."""
    for target in {logging.getLogger(), logging.getLogger(name)}:
        target.setLevel(level)
        for handler in target.handlers:
            handler.setLevel(level)


def parse_addon_args(description: str, argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse the command line options every add-on accepts.

    ``--once`` is also enabled by RUN_ONCE=1 in the environment.
    """
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the add-on options file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args(argv)
    args.once = args.once or get_run_once_mode()
    return args


def setup_signal_handlers(logger: Optional[logging.Logger] = None) -> threading.Event:
    """Register SIGTERM and SIGINT handlers for graceful shutdown.

    Args:
        logger: Optional logger for shutdown messages

    Returns:
        Event that will be set when shutdown signal is received
    """
    shutdown_event = threading.Event()
    _logger = logger or logging.getLogger(__name__)

    def signal_handler(signum, frame):
        _logger.info("Received signal %d, initiating graceful shutdown...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    return shutdown_event


def sleep_with_shutdown_check(
    shutdown_event: threading.Event,
    total_seconds: float,
    check_interval: float = 1.0,
    wake_event: Optional[threading.Event] = None,
) -> bool:
    """Sleep for specified duration while checking for shutdown signal.

    A set ``wake_event`` ends the sleep early and is cleared.

    Returns:
        True if sleep completed normally or was woken, False if shutdown was requested
    """
    deadline = time.monotonic() + total_seconds
    while not shutdown_event.is_set():
        if wake_event is not None and wake_event.is_set():
            wake_event.clear()
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return True
        shutdown_event.wait(min(check_interval, remaining))
    return False


def run_addon_loop(
    update_func: Callable[[], None],
    interval_seconds: float,
    shutdown_event: threading.Event,
    logger: Optional[logging.Logger] = None,
    run_once: bool = False,
    wake_event: Optional[threading.Event] = None,
) -> None:
    """Run main add-on loop with graceful shutdown support.

    The first iteration runs immediately, later ones every ``interval_seconds``
    or as soon as ``wake_event`` is set.

    Args:
        update_func: Function to call each iteration
        interval_seconds: Sleep interval between iterations
        shutdown_event: Event to check for shutdown
        logger: Optional logger for error messages
        run_once: If True, exit after first iteration
        wake_event: Optional event that triggers the next iteration early
    """
    _logger = logger or logging.getLogger(__name__)

    while not shutdown_event.is_set():
        try:
            update_func()
        except Exception as e:
            _logger.error("Error in update loop: %s", e, exc_info=True)

        if run_once:
            _logger.info("Single iteration complete, exiting")
            break

        if not sleep_with_shutdown_check(shutdown_event, interval_seconds, wake_event=wake_event):
            break
