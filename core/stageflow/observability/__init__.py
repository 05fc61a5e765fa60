"""
Run-correlated logging.

- run/node fields propagate through a ContextVar into every log record
- JSON lines for log shipping, colored console lines for terminals
"""

from stageflow.observability.logging import (
    bind_log_context,
    configure_logging,
    current_log_context,
    reset_log_context,
)

__all__ = [
    "configure_logging",
    "bind_log_context",
    "current_log_context",
    "reset_log_context",
]
