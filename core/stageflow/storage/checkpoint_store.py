"""
Checkpoint Store - persists the run checkpoint with atomic writes.

Layout inside a run directory (``logs_root``)::

    logs_root/
        checkpoint.json     # latest checkpoint, replaced atomically
        manifest.json
        <node_id>/status.json, prompt.md, response.md

A reader never sees a half-written checkpoint: writes go to a temp file in
the same directory and are renamed over the old file.
"""

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from stageflow.schemas.checkpoint import Checkpoint
from stageflow.utils.io import atomic_write

logger = logging.getLogger(__name__)

CHECKPOINT_FILENAME = "checkpoint.json"


class CheckpointStore:
    """Loads and saves the single checkpoint of a run directory."""

    def __init__(self, logs_root: Path):
        """
        Initialize checkpoint store.

        Args:
            logs_root: Run directory (e.g. ./runs/release-2024-06-01/)
        """
        self.logs_root = Path(logs_root)

    @property
    def path(self) -> Path:
        return self.logs_root / CHECKPOINT_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    async def save(self, checkpoint: Checkpoint) -> None:
        """
        Atomically write the checkpoint.

        Raises:
            OSError: If the file write fails
        """

        def _write() -> None:
            with atomic_write(self.path) as f:
                f.write(checkpoint.model_dump_json(indent=2))
            logger.debug(f"💾 Saved checkpoint at {checkpoint.current_node}")

        await asyncio.to_thread(_write)

    async def load(self) -> Checkpoint | None:
        """
        Load the checkpoint.

        Returns:
            Checkpoint, or None if no checkpoint has been written yet

        Raises:
            ValueError: If the file exists but is not a valid checkpoint
        """

        def _read() -> Checkpoint | None:
            if not self.path.exists():
                logger.warning(f"Checkpoint file not found: {self.path}")
                return None
            try:
                return Checkpoint.model_validate_json(self.path.read_text(encoding="utf-8"))
            except ValidationError as e:
                raise ValueError(f"Corrupt checkpoint {self.path}: {e}") from e

        return await asyncio.to_thread(_read)
