from .context import RunContext
from .events import EventSink, EventType, make_event, read_events
from .report import RunReport
from .runner import PipelineRunner
from .stage import Stage, StageResult, run_stage
from .types import ArtifactRef, Event

__all__ = [
    "ArtifactRef",
    "Event",
    "EventSink",
    "EventType",
    "PipelineRunner",
    "RunContext",
    "RunReport",
    "Stage",
    "StageResult",
    "make_event",
    "read_events",
    "run_stage",
]
