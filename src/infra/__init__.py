"""
Infrastructure helpers shared by the checkout service.

Middleware modules import logging from here rather than from
``src.services.structured_logging`` directly.
"""

from src.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "configure_logging",
    "init_logging",
    "get_logger",
]
