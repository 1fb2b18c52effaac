import logging
import posixpath
import shlex
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import ValidationError

from .. import constants
from ..config import Config, StepModel
from ..datacls import BaseImage, StepAction, StepSpec
from ..exceptions import RecipeDefinitionError

logger = logging.getLogger(__name__)


def guess_manager(base: BaseImage) -> Optional[str]:
    """Default package manager for well-known distribution images."""
    distro = base.name.rsplit('/', 1)[-1]
    return constants.DEFAULT_MANAGERS.get(distro)


def install_command(manager: str, packages: List[str]) -> List[str]:
    if manager not in constants.PACKAGE_MANAGERS:
        raise RecipeDefinitionError(f"Unknown package manager '{manager}'.")
    argv = constants.PACKAGE_MANAGERS[manager] + list(packages)
    prelude = constants.PACKAGE_MANAGER_PRELUDE.get(manager)
    if prelude:
        return constants.SHELL_PREFIX + [f"{prelude} && {shlex.join(argv)}"]
    return argv


def resolve_workdir(parent: str, workdir: Optional[str]) -> str:
    if not workdir:
        return parent
    return posixpath.normpath(posixpath.join(parent, workdir))


class Planner:
    """
    Compiles a validated recipe into the ordered list of step specifications
    a pipeline runs. Nothing is executed here; copy sources are checked so a
    missing file fails before the first step starts.
    """

    def __init__(self, config: Config, context_dir: Optional[Path] = None):
        self.config = config
        self.context_dir = Path(context_dir).resolve() if context_dir else config.context_dir
        self.base = config.base
        logger.debug(f"[Planner] Build context is '{self.context_dir}'.")

    def compile(self) -> List[StepSpec]:
        specs: List[StepSpec] = []
        names = set()
        for i, step in enumerate(self.config.steps):
            spec = self._compile_step(i, step)
            if spec.name in names:
                raise RecipeDefinitionError(f"Duplicate step name '{spec.name}'.")
            names.add(spec.name)
            specs.append(spec)
            logger.debug(f"[Planner] Step {i + 1} '{spec.name}' ({spec.action.value}) in '{spec.workdir}': {spec.argv}")
        logger.info(f"[Planner] Compiled {len(specs)} steps for '{self.config.name}' on '{self.base}'.")
        return specs

    def _compile_step(self, index: int, step: StepModel) -> StepSpec:
        try:
            return self._build_spec(index, step)
        except ValidationError as e:
            raise RecipeDefinitionError(f"Step {index + 1} is invalid:\n{e}")

    def _build_spec(self, index: int, step: StepModel) -> StepSpec:
        action = step.action
        name = step.name or f"{index + 1}-{action.value}"
        workdir = resolve_workdir(self.config.workdir, step.workdir)
        env: Dict[str, str] = {**self.config.env, **step.env}
        fields = dict(name=name, action=action, workdir=workdir, env=env, timeout=step.timeout)

        if action is StepAction.RUN:
            command = step.run
            if isinstance(command, str):
                command = constants.SHELL_PREFIX + [command]
            return StepSpec(command=command, **fields)

        if action is StepAction.INSTALL:
            manager = step.manager or self.config.model.manager or guess_manager(self.base)
            if manager is None:
                raise RecipeDefinitionError(
                    f"Step '{name}' installs packages but no 'manager' is set and none is known for base '{self.base}'."
                )
            return StepSpec(command=install_command(manager, step.install), **fields)

        source, destination = self._resolve_copy(name, step.copy_src, workdir)
        return StepSpec(
            command=["copy", str(source), destination],
            source=str(source),
            destination=destination,
            **fields,
        )

    def _resolve_copy(self, name: str, value: str, workdir: str):
        src, sep, dst = value.partition(':')
        if not src:
            raise RecipeDefinitionError(f"Copy step '{name}' has no source.")
        source = (self.context_dir / src).resolve()
        if source != self.context_dir and self.context_dir not in source.parents:
            raise RecipeDefinitionError(
                f"Copy source '{src}' of step '{name}' is outside the build context '{self.context_dir}'."
            )
        if not source.exists():
            raise RecipeDefinitionError(f"Copy source '{src}' of step '{name}' not found in '{self.context_dir}'.")
        dst = dst if sep and dst else "."
        destination = resolve_workdir(workdir, dst)
        # a trailing '/' (or '.') means "into this directory"
        if (dst.endswith('/') or posixpath.basename(dst) in ('.', '..')) and not destination.endswith('/'):
            destination += '/'
        return source, destination
