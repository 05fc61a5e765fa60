"""Shared stageflow configuration utilities.

Centralises reading of ~/.stageflow/configuration.json so the executor,
the retry layer and embedding applications share one implementation.

Example file::

    {
      "log_level": "DEBUG",
      "retry": {"initial_delay_ms": 500, "factor": 2.0, "max_delay_ms": 30000, "jitter": true},
      "parallel": {"max_parallel": 8, "shutdown_timeout": 30},
      "human": {"timeout_seconds": 300}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stageflow.graph.retry import Backoff

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

STAGEFLOW_CONFIG_FILE = Path.home() / ".stageflow" / "configuration.json"

DEFAULT_INITIAL_DELAY_MS = 200
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_DELAY_MS = 60_000
DEFAULT_MAX_PARALLEL = 4
DEFAULT_SHUTDOWN_TIMEOUT = 30.0


def get_stageflow_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.stageflow/configuration.json (or ``path``)."""
    config_file = Path(path) if path is not None else STAGEFLOW_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config {config_file}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_retry_defaults() -> dict[str, Any]:
    """Return the ``retry`` section, empty if absent."""
    retry = get_stageflow_config().get("retry", {})
    return retry if isinstance(retry, dict) else {}


def get_parallel_defaults() -> dict[str, Any]:
    """Return the ``parallel`` section, empty if absent."""
    parallel = get_stageflow_config().get("parallel", {})
    return parallel if isinstance(parallel, dict) else {}


def get_log_level() -> str:
    """Return the configured log level, INFO by default."""
    return str(get_stageflow_config().get("log_level", "INFO")).upper()


def get_human_timeout() -> float | None:
    """Return the default human-gate timeout in seconds, or None for no limit."""
    value = get_stageflow_config().get("human", {}).get("timeout_seconds")
    return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Executor configuration loaded from ~/.stageflow/configuration.json."""

    initial_delay_ms: int = field(
        default_factory=lambda: int(get_retry_defaults().get("initial_delay_ms", DEFAULT_INITIAL_DELAY_MS))
    )
    backoff_factor: float = field(
        default_factory=lambda: float(get_retry_defaults().get("factor", DEFAULT_BACKOFF_FACTOR))
    )
    max_delay_ms: int = field(
        default_factory=lambda: int(get_retry_defaults().get("max_delay_ms", DEFAULT_MAX_DELAY_MS))
    )
    jitter: bool = field(default_factory=lambda: bool(get_retry_defaults().get("jitter", True)))
    default_max_parallel: int = field(
        default_factory=lambda: int(get_parallel_defaults().get("max_parallel", DEFAULT_MAX_PARALLEL))
    )
    branch_shutdown_timeout: float = field(
        default_factory=lambda: float(
            get_parallel_defaults().get("shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT)
        )
    )
    human_timeout_seconds: float | None = field(default_factory=get_human_timeout)
    log_level: str = field(default_factory=get_log_level)

    def default_backoff(self) -> Backoff:
        """Build the backoff used for nodes that do not pick a preset."""
        from stageflow.graph.retry import Backoff

        return Backoff(
            initial_delay_ms=self.initial_delay_ms,
            factor=self.backoff_factor,
            max_delay_ms=self.max_delay_ms,
            jitter=self.jitter,
        )
