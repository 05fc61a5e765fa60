"""
Generic stage executor for prompt-driven (``box``) nodes.

The handler assembles the stage prompt, records it in the run directory,
hands it to a StageBackend, and records the response. Concrete backends
that call external coding tools live outside this package; the built-in
SimulationBackend lets a graph run end to end without one.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.fidelity import build_preamble
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import Handler
from stageflow.storage.run_directory import RunDirectory

logger = logging.getLogger(__name__)

RESPONSE_TRUNCATION_LENGTH = 200
PROMPT_SUMMARY_LENGTH = 500


class StageBackend(ABC):
    """Produces a response for a stage prompt."""

    @abstractmethod
    async def run(self, node: Node, prompt: str, context: Context) -> str:
        """Return the response text for ``prompt``."""


class SimulationBackend(StageBackend):
    """Returns a canned response without calling anything."""

    async def run(self, node: Node, prompt: str, context: Context) -> str:
        return f"[Simulated] Response for stage: {node.id}"


def expand_variables(text: str, graph: Graph) -> str:
    return text.replace("$goal", graph.goal)


def build_prompt(node: Node, context: Context, graph: Graph) -> str:
    """
    Assemble the full prompt for a stage.

    Sections, in order: the fidelity preamble summarizing prior stages,
    the current project file listing (if a stage put one in context), and
    the task itself (node prompt, or label, with ``$goal`` expanded).
    """
    task = expand_variables(node.prompt or node.label, graph)

    sections = []
    preamble = build_preamble(node, context, graph)
    if preamble:
        sections.append(f"## Context from prior stages\n{preamble}")

    file_listing = context.get_string("file_listing")
    if file_listing:
        sections.append(f"## Current project files\n{file_listing}")

    sections.append(f"## Current task\n{task}")
    return "\n\n".join(sections)


class StageHandler(Handler):
    """Runs a prompt through a StageBackend and records the exchange."""

    def __init__(self, backend: StageBackend | None = None):
        self.backend = backend or SimulationBackend()

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        run_dir = RunDirectory(logs_root)
        prompt = build_prompt(node, context, graph)
        await run_dir.write_prompt(node.id, prompt)

        try:
            response = str(await self.backend.run(node, prompt, context))
        except Exception as e:
            logger.warning(f"✗ Backend error in '{node.id}': {e}")
            return Outcome.fail(f"Backend error: {e}")

        await run_dir.write_response(node.id, response)

        return Outcome(
            status=StageStatus.SUCCESS,
            notes=f"Stage completed: {node.id}",
            context_updates={
                "last_stage": node.id,
                "last_response": response[:RESPONSE_TRUNCATION_LENGTH],
                "last_codergen_node": node.id,
                "last_codergen_prompt_summary": prompt[:PROMPT_SUMMARY_LENGTH],
            },
        )
