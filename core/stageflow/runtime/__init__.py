"""Runtime services shared by a pipeline run."""

from stageflow.runtime.event_bus import EventBus, EventType, PipelineEvent

__all__ = ["EventBus", "EventType", "PipelineEvent"]
