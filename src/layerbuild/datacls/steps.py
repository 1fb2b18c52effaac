from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StepAction(str, Enum):
    RUN = "run"
    COPY = "copy"
    INSTALL = "install"


class StepSpec(BaseModel):
    """
    One provisioning step of a pipeline.

    The working directory and environment are carried by the step itself so a
    step never depends on process-wide state left behind by an earlier one.
    For copy steps `source` is a host path and `destination` a path inside the
    image; `command` then only describes the step for traces and layers.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    action: StepAction = StepAction.RUN
    workdir: str = "/"
    command: Tuple[str, ...]
    env: Dict[str, str] = Field(default_factory=dict)
    source: Optional[str] = None
    destination: Optional[str] = None
    timeout: Optional[float] = None

    @field_validator('workdir')
    @classmethod
    def check_workdir(cls, v: str) -> str:
        if not PurePosixPath(v).is_absolute():
            raise ValueError(f"Step working directory must be absolute, got '{v}'.")
        return v

    @field_validator('timeout')
    @classmethod
    def check_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("Step timeout must be positive.")
        return v

    @model_validator(mode='after')
    def check_action_fields(self) -> 'StepSpec':
        if not self.command:
            raise ValueError(f"Step '{self.name}' has an empty command.")
        if self.action is StepAction.COPY and (not self.source or not self.destination):
            raise ValueError(f"Copy step '{self.name}' needs both 'source' and 'destination'.")
        return self

    @property
    def argv(self) -> list:
        return list(self.command)
