"""
Image build pipeline

Runs an ordered list of step specifications on top of a base snapshot, one
step at a time, and stops at the first step that does not exit 0. Each
successful step contributes exactly one layer to the snapshot chain; a failed
or cancelled build keeps the chain truncated at the last completed step and
never reports it as a usable image.
"""
import logging
import threading
import time
from typing import List, Optional, Sequence

from .. import constants
from ..datacls import BaseImage, BuildResult, BuildState, Layer, Snapshot, StepOutcome, StepSpec, TraceEntry
from ..exceptions import BuildCancelled, RecipeDefinitionError, RunnerError, SnapshotError, StepFailure
from ..protocols import StepRunner
from ..utils.logger import log_step

logger = logging.getLogger(__name__)


def output_tail(output: str, lines: int = constants.OUTPUT_TAIL_LINES) -> str:
    """Last `lines` lines of a step's captured output."""
    if not output:
        return ""
    return "\n".join(output.rstrip("\n").splitlines()[-lines:])


class Pipeline:
    """
    Executes steps strictly in declaration order against a runner.

    `run()` blocks until every step has exited. `cancel()` may be called from
    another thread or a signal handler; it asks the runner to kill the step in
    flight and no further step is started.
    """

    def __init__(self, base: BaseImage, steps: Sequence[StepSpec], runner: StepRunner):
        self.base = base
        self.steps: List[StepSpec] = list(steps)
        self.runner = runner
        self.state = BuildState.RUNNING
        self._cancelled = threading.Event()
        self._check_names()

    def _check_names(self):
        seen = set()
        for step in self.steps:
            if step.name in seen:
                raise RecipeDefinitionError(f"Duplicate step name '{step.name}' in pipeline.")
            seen.add(step.name)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        logger.warning("[Pipeline] Cancellation requested.")
        self._cancelled.set()
        self.runner.cancel()

    def run(self) -> BuildResult:
        logger.info(f"[Pipeline] Resolving base image '{self.base}'...")
        snapshot = Snapshot(base=self.base, base_id=self.runner.resolve_base(self.base))
        trace: List[TraceEntry] = []
        total = len(self.steps)
        logger.info(f"[Pipeline] Running {total} steps on '{snapshot.base_id}'.")

        for index, step in enumerate(self.steps):
            if self.cancelled:
                self._cancel_build(snapshot, trace, f"Build cancelled before step {index + 1} '{step.name}'")

            logger.info(f"[Pipeline] Step {index + 1}/{total} '{step.name}': {' '.join(step.argv)}")
            started = time.monotonic()
            try:
                with log_step(step.name):
                    outcome = self.runner.run(step, snapshot.active, index)
            except RunnerError as e:
                outcome = StepOutcome(exit_status=None, output=str(e))
                self._fail(index, step, outcome, snapshot, trace, time.monotonic() - started, cause=e)
            duration = time.monotonic() - started

            if not outcome.ok:
                if self.cancelled:
                    trace.append(TraceEntry(
                        index=index, name=step.name, status=BuildState.CANCELLED,
                        exit_status=outcome.exit_status, duration=duration,
                    ))
                    self._cancel_build(snapshot, trace, f"Build cancelled during step {index + 1} '{step.name}'")
                self._fail(index, step, outcome, snapshot, trace, duration)

            if not outcome.layer_id:
                raise SnapshotError(f"Runner reported success for step '{step.name}' but produced no layer.")
            snapshot = snapshot.append(Layer(
                digest=outcome.layer_id,
                index=index,
                step=step.name,
                parent=snapshot.active,
                created_by=step.command,
                changes=outcome.changes,
            ))
            trace.append(TraceEntry(
                index=index, name=step.name, status=BuildState.SUCCEEDED, exit_status=0, duration=duration,
            ))
            logger.debug(f"[Pipeline] Step '{step.name}' done in {duration:.2f}s, layer '{outcome.layer_id}'.")

        self.state = BuildState.SUCCEEDED
        logger.info(f"[Pipeline] All {total} steps succeeded, final snapshot '{snapshot.active}'.")
        return BuildResult(state=self.state, snapshot=snapshot, trace=tuple(trace))

    def _fail(self, index: int, step: StepSpec, outcome: StepOutcome, snapshot: Snapshot,
              trace: List[TraceEntry], duration: float, cause: Optional[Exception] = None):
        self.state = BuildState.FAILED
        trace.append(TraceEntry(
            index=index, name=step.name, status=BuildState.FAILED,
            exit_status=outcome.exit_status, duration=duration,
        ))
        result = BuildResult(state=self.state, snapshot=snapshot, trace=tuple(trace), failed_step=index)
        failure = StepFailure(index, step.name, outcome.exit_status, outcome.output, result)
        logger.error(f"[Pipeline] {failure}")
        tail = output_tail(outcome.output)
        if tail:
            logger.error(f"[Pipeline] Output of '{step.name}':\n{tail}")
        remaining = len(self.steps) - index - 1
        if remaining:
            logger.info(f"[Pipeline] Skipping {remaining} remaining steps.")
        if cause is not None:
            raise failure from cause
        raise failure

    def _cancel_build(self, snapshot: Snapshot, trace: List[TraceEntry], message: str):
        self.state = BuildState.CANCELLED
        result = BuildResult(state=self.state, snapshot=snapshot, trace=tuple(trace))
        logger.warning(f"[Pipeline] {message}; snapshot kept at '{snapshot.active}'.")
        raise BuildCancelled(message, result)
