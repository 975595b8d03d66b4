"""
Logging setup for services embedding fhir-core.

Library modules only create loggers (``logging.getLogger(__name__)``) and pass
structured context through ``extra``; handlers are installed once by the host
process via setup_logging().
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import Settings


def setup_logging(settings: Settings) -> None:
    """Configure root logging based on configuration.

    Args:
        settings: Engine settings
    """
    level = getattr(logging, settings.observability.log_level.upper(), logging.INFO)

    if settings.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
