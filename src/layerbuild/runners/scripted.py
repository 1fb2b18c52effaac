import logging
import threading
from typing import Dict, List, Optional, Union

from ..datacls import BaseImage, Snapshot, StepOutcome, StepSpec
from ..utils.digest import sha256_of

logger = logging.getLogger(__name__)


class ScriptedRunner:
    """
    Runner that starts no processes.

    Every step exits 0 unless `exit_codes` says otherwise; an exception
    instance in `exit_codes` is raised instead, which is how a broken backend
    is simulated. Layer ids are derived from the parent id and the command,
    so the same plan always yields the same chain. Used for dry runs and tests.
    """

    def __init__(
        self,
        exit_codes: Optional[Dict[str, Union[int, Exception]]] = None,
        outputs: Optional[Dict[str, str]] = None,
        base_id: Optional[str] = None,
        on_run=None,
    ):
        self.exit_codes = dict(exit_codes or {})
        self.outputs = dict(outputs or {})
        self.base_id = base_id
        self.on_run = on_run
        self.trace: List[str] = []
        self.finalized: Optional[Snapshot] = None
        self.tag: Optional[str] = None
        self._cancelled = threading.Event()

    def resolve_base(self, base: BaseImage) -> str:
        base_id = self.base_id or sha256_of("base", base.reference)
        logger.debug(f"[Scripted] Base '{base}' resolved to '{base_id}'.")
        return base_id

    def run(self, step: StepSpec, parent: str, index: int) -> StepOutcome:
        self.trace.append(step.name)
        logger.info(f"[Scripted] {step.workdir}$ {' '.join(step.argv)}")
        if self.on_run is not None:
            self.on_run(step)
        if self._cancelled.is_set():
            return StepOutcome(exit_status=-15, output="cancelled")
        code = self.exit_codes.get(step.name, 0)
        if isinstance(code, Exception):
            raise code
        output = self.outputs.get(step.name, "")
        if code != 0:
            return StepOutcome(exit_status=code, output=output)
        return StepOutcome(
            exit_status=0,
            output=output,
            layer_id=sha256_of(parent, str(index), step.name, *step.argv),
        )

    def cancel(self) -> None:
        self._cancelled.set()

    def finalize(self, snapshot: Snapshot, tag: Optional[str] = None) -> None:
        self.finalized = snapshot
        self.tag = tag
