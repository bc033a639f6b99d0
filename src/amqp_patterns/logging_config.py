"""
Centralized logging configuration for amqp-patterns processes.

This module provides consistent logging setup for publishers, subscribers
and workers started from the sample CLI or embedded in another application.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    level: int = logging.INFO,
    microservice_name: Optional[str] = None,
    force_setup: bool = False,
    enable_console: bool = True,
) -> None:
    """
    Setup logging configuration for amqp-patterns processes.

    Args:
        level: Logging level (default: INFO)
        microservice_name: Name of the component (e.g., 'task-worker', 'fanout-subscriber')
        force_setup: Whether to force reconfiguration even if already setup
        enable_console: Whether to enable console logging (default: True)
    """
    # Check if logging has already been configured
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        root_logger.setLevel(level)
        return

    # Clear any existing handlers if we're forcing setup
    if force_setup:
        root_logger.handlers.clear()

    if enable_console:
        _setup_console_logging(microservice_name)

    root_logger.setLevel(level)

    # Reduce noise from the broker client, it logs every frame at debug
    logging.getLogger("amqpstorm").setLevel(logging.WARNING)

    logging.getLogger("amqp_patterns").setLevel(level)


def create_formatter(microservice_name: Optional[str] = None) -> logging.Formatter:
    """
    Create a standardized formatter for amqp-patterns processes.

    Args:
        microservice_name: Name of the component for log identification

    Returns:
        Configured logging formatter
    """
    if microservice_name:
        service_prefix = f"[{microservice_name}] "
    else:
        service_prefix = ""

    return logging.Formatter(
        f"%(asctime)s - {service_prefix}%(name)s - %(levelname)s - %(message)s"
    )


def _setup_console_logging(microservice_name: Optional[str] = None) -> None:
    """
    Setup console logging configuration.

    Args:
        microservice_name: Name of the component for log identification
    """
    formatter = create_formatter(microservice_name)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.getLogger().addHandler(handler)


def parse_log_level(name: Optional[str], default: int = logging.INFO) -> int:
    """
    Map a level name such as ``debug`` or ``WARNING`` to its logging constant.

    Raises:
        ValueError: If the name is not a known logging level
    """
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level
