# shipkit/core/logging_config.py
"""
Centralized logging configuration.

Keeps carrier adapter logs visible while quieting the HTTP client libraries.

shipkit never configures logging on import. Applications call
``configure_logging()`` once at startup; otherwise shipkit records go
wherever the host application routes the ``shipkit`` logger.
"""

import logging
from typing import Optional

from shipkit.core.config import get_settings


def configure_logging(level: Optional[str] = None):
    """
    Configure logging for the carrier adapters.

    - shipkit code: INFO (or whatever LOG_LEVEL says)
    - HTTP clients (httpx, httpcore): WARNING only
    """
    log_level = (level or get_settings().LOG_LEVEL).upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    # Quiet noisy HTTP client loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("shipkit").setLevel(getattr(logging, log_level, logging.INFO))
