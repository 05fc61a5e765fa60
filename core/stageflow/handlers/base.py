"""
Handler protocol - how a stage is executed.

A handler receives the node, the run context, the whole graph and the run
directory, and returns a fresh Outcome. Handlers may raise; the retry
executor turns exceptions into ``fail`` outcomes.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from pathlib import Path

from stageflow.graph.context import Context
from stageflow.graph.edge import Graph
from stageflow.graph.node import Node
from stageflow.graph.outcome import Outcome


class Handler(ABC):
    """Executes one kind of stage."""

    @abstractmethod
    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        """Run the stage and return its outcome."""


HandlerFunc = Callable[[Node, Context, Graph, Path], Outcome | Awaitable[Outcome]]


class FunctionHandler(Handler):
    """
    Adapts a plain function to the Handler interface.

    Coroutine functions are awaited on the loop. Plain functions run in a
    worker thread so a blocking body does not stall other branches.

    Example:
        def lint(node, context, graph, logs_root):
            return Outcome(status=StageStatus.SUCCESS)

        registry.register("lint", FunctionHandler(lint))
    """

    def __init__(self, func: HandlerFunc):
        self.func = func

    async def execute(self, node: Node, context: Context, graph: Graph, logs_root: Path) -> Outcome:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(node, context, graph, logs_root)
        result = await asyncio.to_thread(self.func, node, context, graph, logs_root)
        if inspect.isawaitable(result):
            result = await result
        return result
