"""
Engine error taxonomy.

Configuration errors, goal-gate violations and routing dead ends are fatal:
they abort the run immediately and are never retried. Stage failures are not
represented here - handler exceptions are converted into ``fail`` outcomes by
the retry executor and only become fatal through routing.
"""


class EngineError(Exception):
    """Base class for fatal pipeline errors."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class ConfigurationError(EngineError):
    """The graph is malformed in a way the engine cannot recover from."""


class NodeNotFoundError(ConfigurationError):
    """A referenced node id does not exist in the graph."""

    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' not found in graph", node_id=node_id)


class HandlerNotFoundError(ConfigurationError):
    """No handler could be resolved for a node."""

    def __init__(self, node_id: str, node_type: str = "", shape: str = ""):
        super().__init__(
            f"No handler for node '{node_id}' (type={node_type or '-'}, shape={shape or '-'})",
            node_id=node_id,
        )


class GoalGateError(EngineError):
    """A goal-gate node did not succeed and no retry target resolved."""


class RoutingError(EngineError):
    """A failed stage has no edge to follow."""


class ContextValueError(TypeError):
    """A value outside the permitted context value kinds was stored."""


class StageOutputError(EngineError):
    """A handler returned context updates the run context cannot hold."""
