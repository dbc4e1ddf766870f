from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    model_validator,
)

from bench_dispatch.models import EventKind

TargetName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=120, pattern=r"^[A-Za-z0-9_][A-Za-z0-9_]*$"),
]
Glob = Annotated[str, StringConstraints(min_length=1)]
SelectionPolicy = Literal["unique", "newest"]


class TriggerRule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kinds: frozenset[EventKind] = Field(..., min_length=1)
    # None: filter omitted, every ref or path passes. A configured list must
    # name at least one pattern.
    ref_patterns: Optional[tuple[Glob, ...]] = Field(default=None, min_length=1)
    path_patterns: Optional[tuple[Glob, ...]] = Field(default=None, min_length=1)


class ConcurrencyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Workflow identity used in dedup keys; defaults to the workflow name.
    group: Optional[str] = Field(default=None, min_length=1)


class BuildProfile(BaseModel):
    """
    Toolchain invocation. Passed opaquely to the toolchain collaborator; the
    env carries the flags downstream instrumentation depends on.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    command: tuple[str, ...] = Field(
        default=(
            "cargo",
            "build",
            "--release",
            "-p",
            "oxc_benchmark",
            "--features",
            "codspeed",
        ),
        min_length=1,
    )
    target_flag: str = "--bench"
    env: dict[str, str] = Field(
        default_factory=lambda: {
            "RUSTFLAGS": "-C debuginfo=2 -C strip=none -g --cfg codspeed"
        }
    )
    output_dir: Path = Path("target/release/deps")


class NormalizeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    dest_dir: Path = Path("target/codspeed/oxc_benchmark")
    metadata_suffixes: tuple[str, ...] = (".d",)
    selection: SelectionPolicy = "unique"


class BenchRunnerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    command: tuple[str, ...] = Field(default=("cargo", "codspeed", "run"), min_length=1)
    token_env: str = Field(default="CODSPEED_TOKEN", min_length=1)
    artifact_dir_env: str = Field(default="BENCH_ARTIFACT_DIR", min_length=1)
    timeout_minutes: float = Field(default=30.0, gt=0)
    kill_grace_s: float = Field(default=5.0, ge=0)

    @property
    def timeout_s(self) -> float:
        return self.timeout_minutes * 60.0


class WorkflowConfig(BaseModel):
    """
    Immutable workflow definition, loaded once at startup and passed explicitly
    to each component.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    spec_version: int = Field(default=1, ge=1)
    name: str = Field(..., min_length=1)
    trigger: TriggerRule
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    targets: tuple[TargetName, ...] = Field(..., min_length=1)
    build: BuildProfile = BuildProfile()
    normalize: NormalizeConfig = NormalizeConfig()
    runner: BenchRunnerConfig = BenchRunnerConfig()

    @model_validator(mode="after")
    def _validate(self) -> "WorkflowConfig":
        if len(self.targets) != len(set(self.targets)):
            dupes = sorted({t for t in self.targets if self.targets.count(t) > 1})
            raise ValueError(f"Duplicate target(s): {dupes}")
        return self

    @property
    def identity(self) -> str:
        return self.concurrency.group or self.name
