"""Stage handlers and the registry that resolves them."""

from stageflow.handlers.base import FunctionHandler, Handler
from stageflow.handlers.builtin import ConditionalHandler, ExitHandler, FanInHandler, StartHandler
from stageflow.handlers.manager_loop import ManagerLoopHandler
from stageflow.handlers.parallel import ParallelHandler
from stageflow.handlers.registry import SHAPE_TO_TYPE, HandlerRegistry, HandlerType, default_registry
from stageflow.handlers.stage import SimulationBackend, StageBackend, StageHandler
from stageflow.handlers.wait_human import WaitHumanHandler

__all__ = [
    "Handler",
    "FunctionHandler",
    "HandlerRegistry",
    "HandlerType",
    "SHAPE_TO_TYPE",
    "default_registry",
    "StartHandler",
    "ExitHandler",
    "ConditionalHandler",
    "FanInHandler",
    "ParallelHandler",
    "WaitHumanHandler",
    "StageHandler",
    "StageBackend",
    "SimulationBackend",
    "ManagerLoopHandler",
]
