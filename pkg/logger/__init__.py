"""
Logger package.
"""
from .logger import (
    setup_logging,
    get_logger,
    set_correlation_id,
    get_correlation_id,
    StructuredFormatter,
    StructuredLogger,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "StructuredFormatter",
    "StructuredLogger",
]
