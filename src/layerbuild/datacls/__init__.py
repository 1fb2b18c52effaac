from .image import BaseImage
from .steps import StepAction, StepSpec
from .snapshot import Layer, Snapshot
from .results import BuildState, BuildResult, StepOutcome, TraceEntry

__all__ = [
    'BaseImage',
    'StepAction',
    'StepSpec',
    'Layer',
    'Snapshot',
    'BuildState',
    'BuildResult',
    'StepOutcome',
    'TraceEntry',
]
