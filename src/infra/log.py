"""
Logging entry point for the checkout service.

Re-exports the JSON structured logger so the error handlers do not depend
on where the formatter lives.
"""

from src.services.structured_logging import (
    configure_logging,
    init_logging,
    get_logger,
)

__all__ = ["configure_logging", "init_logging", "get_logger"]
