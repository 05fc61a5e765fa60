"""Small shared utilities."""

from stageflow.utils.io import atomic_write

__all__ = ["atomic_write"]
