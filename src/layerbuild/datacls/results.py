from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict

from .snapshot import Snapshot


class BuildState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepOutcome(BaseModel):
    """What a runner reports back for one step."""
    model_config = ConfigDict(frozen=True)

    exit_status: Optional[int]
    output: str = ""
    layer_id: Optional[str] = None
    changes: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class TraceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    name: str
    status: BuildState
    exit_status: Optional[int] = None
    duration: float = 0.0


class BuildResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: BuildState
    snapshot: Snapshot
    trace: Tuple[TraceEntry, ...] = ()
    failed_step: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.state is BuildState.SUCCEEDED

    @property
    def executed(self) -> list:
        """Names of the steps that were started, in execution order."""
        return [entry.name for entry in self.trace]
