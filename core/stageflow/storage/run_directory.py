"""
Run directory - per-stage artifacts written next to the checkpoint.

Each node gets ``logs_root/<node_id>/`` holding whatever the stage produced:
``status.json`` (the outcome), and for prompt-driven stages ``prompt.md``
and ``response.md``. These are write-only from the engine's point of view;
nothing in a run reads them back.

Every file is replaced atomically, and the blocking I/O runs in a worker
thread like the checkpoint store's.
"""

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path

from stageflow.graph.edge import Graph
from stageflow.graph.outcome import Outcome
from stageflow.utils.io import atomic_write


def _write_text(path: Path, text: str) -> Path:
    with atomic_write(path) as f:
        f.write(text)
    return path


class RunDirectory:
    """Artifact writer rooted at a run's ``logs_root``."""

    def __init__(self, logs_root: Path):
        self.logs_root = Path(logs_root)

    def node_dir(self, node_id: str) -> Path:
        return self.logs_root / node_id

    async def write_status(self, node_id: str, outcome: Outcome) -> Path:
        text = json.dumps(outcome.to_dict(), indent=2, ensure_ascii=False)
        return await asyncio.to_thread(_write_text, self.node_dir(node_id) / "status.json", text)

    async def write_prompt(self, node_id: str, prompt: str) -> Path:
        return await asyncio.to_thread(_write_text, self.node_dir(node_id) / "prompt.md", prompt)

    async def write_response(self, node_id: str, response: str) -> Path:
        return await asyncio.to_thread(
            _write_text, self.node_dir(node_id) / "response.md", response
        )

    async def write_manifest(self, graph: Graph) -> Path:
        manifest = {
            "name": graph.name,
            "goal": graph.goal,
            "started_at": datetime.now(UTC).isoformat(),
        }
        text = json.dumps(manifest, indent=2, ensure_ascii=False)
        return await asyncio.to_thread(_write_text, self.logs_root / "manifest.json", text)
