"""
Logging setup for the memory engine.

Batch jobs and enrichment run on worker threads, so records carry the thread
name alongside the module.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - [%(threadName)s] - %(levelname)s - %(message)s'

# Client libraries that log every request at INFO
QUIET_LOGGERS = ('opensearch', 'botocore', 'urllib3', 'gremlinpython')


def _resolve(config: Optional[AppConfig]) -> AppConfig:
    if config is None:
        from .config import config as default_config
        return default_config
    return config


def _level(config: AppConfig) -> int:
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """Configure the root logger from LOG_LEVEL and quiet the AWS client libraries."""
    config = _resolve(config)

    logging.basicConfig(level=_level(config), format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    quiet_level = logging.DEBUG if config.environment == 'development' and _level(config) == logging.DEBUG \
        else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Module logger at the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level(_resolve(config)))
    return logger
