"""
stageflow - resumable graph pipeline execution.

Runs a directed graph of typed stages: each stage produces an outcome, and
the outcome plus the graph decide the next stage. Supports retry with
backoff, conditional routing, parallel fan-out, human gates, goal gates
and crash-resumable checkpoints.
"""

from stageflow.config import EngineConfig
from stageflow.errors import (
    ConfigurationError,
    EngineError,
    GoalGateError,
    HandlerNotFoundError,
    NodeNotFoundError,
    RoutingError,
    StageOutputError,
)
from stageflow.graph.executor import ExecutionResult, GraphExecutor

__all__ = [
    "GraphExecutor",
    "ExecutionResult",
    "EngineConfig",
    "EngineError",
    "ConfigurationError",
    "NodeNotFoundError",
    "HandlerNotFoundError",
    "GoalGateError",
    "RoutingError",
    "StageOutputError",
]
