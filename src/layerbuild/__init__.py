"""
layerbuild

Programmatic, layer-by-layer image builds: a recipe names a base image and an
ordered list of provisioning steps, and a fail-fast pipeline runs them one at
a time, appending one immutable layer per successful step.

Main modules:
- config: Recipe loading and validation (YAML or Dockerfile)
- builder: Plan compilation, the pipeline and the build report
- runners: Backends that execute steps (scripted, local rootfs, docker)
- datacls: Immutable value types (steps, layers, snapshots, results)
- utils: Logging and digests

Quick start example:
```python
from layerbuild import Builder, Config
from layerbuild.runners import create_runner

config = Config("recipe.yml")
result = Builder(config, create_runner("docker")).run()
print(result.snapshot.active)
```
"""

from .protocols import StepRunner
from .config import Config, RecipeModel
from .builder import Builder, Pipeline, Planner
from .datacls import BaseImage, StepSpec, Layer, Snapshot, BuildResult, BuildState
from .exceptions import (
    LayerBuildError,
    ConfigurationError,
    DefinitionError,
    BuildError,
    StepFailure,
    BuildCancelled,
)

__version__ = "0.3.0"

__all__ = [
    # Version
    '__version__',
    # Protocols
    'StepRunner',
    # Config
    'Config',
    'RecipeModel',
    # Builder
    'Builder',
    'Pipeline',
    'Planner',
    # Data
    'BaseImage',
    'StepSpec',
    'Layer',
    'Snapshot',
    'BuildResult',
    'BuildState',
    # Exceptions
    'LayerBuildError',
    'ConfigurationError',
    'DefinitionError',
    'BuildError',
    'StepFailure',
    'BuildCancelled',
]
