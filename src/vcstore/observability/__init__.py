"""Observability module for vcstore.

Provides structured logging shared by the store facade and its engines.
"""

from vcstore.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    store_context,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "store_context",
]
