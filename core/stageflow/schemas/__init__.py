"""Persisted data shapes."""

from stageflow.schemas.checkpoint import Checkpoint

__all__ = ["Checkpoint"]
