"""
Structured logging for the analysis consumer.

Import directly from sub-modules or from here:
    from analysis_consumer.logging import get_logger, log_with_context, log_exception
    from analysis_consumer.logging.setup import setup_logging
"""

from analysis_consumer.logging.context import (
    MessageLogContext,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from analysis_consumer.logging.utilities import (
    get_logger,
    log_exception,
    log_with_context,
)

__all__ = [
    "MessageLogContext",
    "clear_log_context",
    "get_log_context",
    "set_log_context",
    "get_logger",
    "log_exception",
    "log_with_context",
]
