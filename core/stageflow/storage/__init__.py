"""Durable run storage: checkpoints and per-stage artifacts."""

from stageflow.storage.checkpoint_store import CheckpointStore
from stageflow.storage.run_directory import RunDirectory

__all__ = ["CheckpointStore", "RunDirectory"]
