"""
Manager loop - supervise a child pipeline through the shared context.

The handler polls ``context.stack.child.status``/``.outcome`` (published by
whatever drives the child) until the child completes, fails, a stop
condition holds, or the cycle budget runs out.

Node attributes:
    manager.poll_interval   duration between polls (default 45s)
    manager.max_cycles      poll budget (default 1000)
    manager.stop_condition  ``key=value`` checked against the context
"""

import asyncio
import re
from pathlib import Path

from stageflow.graph.attributes import as_int, as_str, parse_duration_ms
from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome, StageStatus
from stageflow.handlers.base import Handler

DEFAULT_POLL_INTERVAL_SECONDS = 45.0
DEFAULT_MAX_CYCLES = 1000

_STOP_CONDITION_RE = re.compile(r'^(\S+)\s*=\s*"?([^"]*)"?$')


class ManagerLoopHandler(Handler):
    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        poll_interval = self._poll_interval(node)
        max_cycles = as_int(node.get("manager.max_cycles"), DEFAULT_MAX_CYCLES)
        stop_condition = as_str(node.get("manager.stop_condition")).strip()

        for cycle in range(1, max_cycles + 1):
            updates = {"manager.cycles_completed": cycle}
            child_status = context.get_string("context.stack.child.status")

            if child_status == "completed" and (
                context.get_string("context.stack.child.outcome") == "success"
            ):
                return Outcome(
                    status=StageStatus.SUCCESS,
                    notes=f"Child completed successfully at cycle {cycle}",
                    context_updates=updates,
                )
            if child_status == "failed":
                return Outcome(
                    status=StageStatus.FAIL,
                    failure_reason=f"Child failed at cycle {cycle}",
                    context_updates=updates,
                )
            if stop_condition and self._stop_condition_met(stop_condition, context):
                return Outcome(
                    status=StageStatus.SUCCESS,
                    notes=f"Stop condition satisfied at cycle {cycle}",
                    context_updates=updates,
                )

            if poll_interval > 0:
                await asyncio.sleep(poll_interval)

        return Outcome(
            status=StageStatus.FAIL,
            failure_reason=f"Max cycles ({max_cycles}) exceeded",
            context_updates={"manager.cycles_completed": max_cycles},
        )

    @staticmethod
    def _poll_interval(node: Node) -> float:
        raw = node.get("manager.poll_interval")
        if isinstance(raw, str):
            raw = parse_duration_ms(raw)
        if isinstance(raw, int | float) and not isinstance(raw, bool):
            return raw / 1000
        return DEFAULT_POLL_INTERVAL_SECONDS

    @staticmethod
    def _stop_condition_met(condition: str, context: Context) -> bool:
        match = _STOP_CONDITION_RE.match(condition)
        if not match:
            return False
        return context.get_string(match.group(1)) == match.group(2)
