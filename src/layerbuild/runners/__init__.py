"""
layerbuild runners

- ScriptedRunner: no processes, scripted exit codes (dry runs, tests)
- LocalRunner: host processes against a rootfs directory
- DockerRunner: one committed container per step (python-on-whales)
"""
import logging
from typing import Dict, Type

from .. import constants
from ..exceptions import RunnerError
from .scripted import ScriptedRunner
from .local import LocalRunner
from .docker import DockerRunner

logger = logging.getLogger(__name__)

RUNNERS: Dict[str, Type] = {
    constants.RUNNER_SCRIPTED: ScriptedRunner,
    constants.RUNNER_LOCAL: LocalRunner,
    constants.RUNNER_DOCKER: DockerRunner,
}


def create_runner(name: str, **options):
    """Instantiate the runner registered under `name` with `options`."""
    try:
        runner_cls = RUNNERS[name]
    except KeyError:
        raise RunnerError(f"Unknown runner '{name}', must be one of {sorted(RUNNERS)}.")
    logger.debug(f"Creating runner '{name}' with options {sorted(options)}.")
    try:
        return runner_cls(**options)
    except TypeError as e:
        raise RunnerError(f"Invalid options for runner '{name}': {e}") from e


__all__ = [
    'RUNNERS',
    'create_runner',
    'ScriptedRunner',
    'LocalRunner',
    'DockerRunner',
]
