from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bench_dispatch.core import ILogger, RunLayout, file_digest, relpath_posix
from bench_dispatch.models import ArtifactSet, JobRun, RunResult
from bench_dispatch.workflow.models import WorkflowConfig

from .events import EventSink, EventType, make_event
from .types import ArtifactRef


@dataclass(slots=True)
class RunContext:
    """
    State owned by a single run's execution path. Nothing here is shared with
    other runs.
    """

    run: JobRun
    workflow: WorkflowConfig
    workspace: Path
    layout: RunLayout
    logger: ILogger
    events: EventSink

    # stage_id -> artifact set produced by that stage
    artifacts: dict[str, ArtifactSet] = field(default_factory=dict)
    result: RunResult | None = None

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def run_id(self) -> str:
        return self.run.id

    def resolve(self, path: Path) -> Path:
        """Resolve a workflow-relative path against the workspace."""
        p = Path(path)
        return p if p.is_absolute() else self.workspace / p

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(self, event: EventType | str, *, stage: str | None = None, **kw: object) -> None:
        # Keep event chatter at debug level to leave console logs readable.
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )

    def record_artifact(self, *, stage: str, target: str, path: Path) -> ArtifactRef:
        p = Path(path)
        digest = file_digest(p)
        try:
            rel = relpath_posix(p, self.workspace)
        except ValueError:
            rel = p.as_posix()
        art = ArtifactRef(target=target, path=rel, bytes=digest.bytes, sha256=digest.sha256)
        self.emit(
            EventType.ARTIFACT_WRITTEN,
            stage=stage,
            target=target,
            path=art.path,
            bytes=art.bytes,
            sha256=art.sha256,
        )
        return art
