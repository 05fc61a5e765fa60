"""
Handler registry - maps nodes to the handler that runs them.

Resolution order for a node:
    1. its explicit ``type`` attribute, if a handler is registered for it
    2. the handler type implied by its ``shape`` (SHAPE_TO_TYPE)
    3. the registry's default handler, which may be None

Built-in stage kinds are the HandlerType values. Any other string can be
registered to plug in a custom stage executor.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from stageflow.graph.node import Node
from stageflow.handlers.base import Handler

if TYPE_CHECKING:
    from stageflow.graph.hitl import Interviewer
    from stageflow.handlers.stage import StageBackend
    from stageflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


class HandlerType(StrEnum):
    """Built-in stage kinds."""

    START = "start"
    EXIT = "exit"
    CODERGEN = "codergen"
    WAIT_HUMAN = "wait.human"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"
    FAN_IN = "parallel.fan_in"
    TOOL = "tool"
    MANAGER_LOOP = "stack.manager_loop"


SHAPE_TO_TYPE: dict[str, HandlerType] = {
    "Mdiamond": HandlerType.START,
    "Msquare": HandlerType.EXIT,
    "box": HandlerType.CODERGEN,
    "hexagon": HandlerType.WAIT_HUMAN,
    "diamond": HandlerType.CONDITIONAL,
    "component": HandlerType.PARALLEL,
    "tripleoctagon": HandlerType.FAN_IN,
    "parallelogram": HandlerType.TOOL,
    "house": HandlerType.MANAGER_LOOP,
}


class HandlerRegistry:
    """Lookup table from handler type string to Handler."""

    def __init__(self, default_handler: Handler | None = None):
        self._handlers: dict[str, Handler] = {}
        self.default_handler = default_handler

    def register(self, handler_type: str, handler: Handler) -> None:
        self._handlers[str(handler_type)] = handler
        logger.debug(f"Registered handler {type(handler).__name__} for '{handler_type}'")

    def unregister(self, handler_type: str) -> bool:
        return self._handlers.pop(str(handler_type), None) is not None

    def get(self, handler_type: str) -> Handler | None:
        return self._handlers.get(str(handler_type))

    def __contains__(self, handler_type: str) -> bool:
        return str(handler_type) in self._handlers

    def resolve(self, node: Node) -> Handler | None:
        if node.type and node.type in self._handlers:
            return self._handlers[node.type]

        shape_type = SHAPE_TO_TYPE.get(node.shape)
        if shape_type is not None and shape_type in self._handlers:
            return self._handlers[shape_type]

        return self.default_handler


def default_registry(
    event_bus: EventBus | None = None,
    interviewer: Interviewer | None = None,
    backend: StageBackend | None = None,
    default_max_parallel: int = 4,
    shutdown_timeout: float = 30.0,
    human_timeout_seconds: float | None = None,
) -> HandlerRegistry:
    """
    Registry with every built-in handler wired up.

    ``tool`` is left unregistered: shell execution is supplied by the
    embedding application.
    """
    from stageflow.graph.hitl import AutoApproveInterviewer
    from stageflow.handlers.builtin import ConditionalHandler, ExitHandler, FanInHandler, StartHandler
    from stageflow.handlers.manager_loop import ManagerLoopHandler
    from stageflow.handlers.parallel import ParallelHandler
    from stageflow.handlers.stage import StageHandler
    from stageflow.handlers.wait_human import WaitHumanHandler

    registry = HandlerRegistry()
    registry.register(HandlerType.START, StartHandler())
    registry.register(HandlerType.EXIT, ExitHandler())
    registry.register(HandlerType.CONDITIONAL, ConditionalHandler())
    registry.register(HandlerType.FAN_IN, FanInHandler())
    registry.register(HandlerType.CODERGEN, StageHandler(backend))
    registry.register(HandlerType.MANAGER_LOOP, ManagerLoopHandler())
    registry.register(
        HandlerType.WAIT_HUMAN,
        WaitHumanHandler(
            interviewer or AutoApproveInterviewer(),
            event_bus=event_bus,
            default_timeout_seconds=human_timeout_seconds,
        ),
    )
    registry.register(
        HandlerType.PARALLEL,
        ParallelHandler(
            registry,
            event_bus=event_bus,
            default_max_parallel=default_max_parallel,
            shutdown_timeout=shutdown_timeout,
        ),
    )
    return registry
