"""
Centralized logging configuration for the story engine.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

# Client libraries that log every HTTP round trip at INFO
_NOISY_LOGGERS = ('opensearch', 'botocore', 'urllib3', 'httpx')


def _level(config: AppConfig) -> int:
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    # stdout carries the MCP protocol under the stdio transport
    stream = sys.stderr if config.mcp.transport == 'stdio' else sys.stdout

    logging.basicConfig(level=_level(config),
                        format='%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(stream)])

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(_level(config), logging.WARNING))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a logger with proper configuration.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None

    Returns:
        Configured logger instance
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logger = logging.getLogger(name)
    logger.setLevel(_level(config))
    return logger
