import logging
from pathlib import Path
from typing import List, Optional

from .. import constants
from ..config import Config
from ..datacls import BuildResult, StepSpec
from ..exceptions import BuildCancelled, StepFailure
from ..protocols import StepRunner
from .pipeline import Pipeline
from .plan import Planner
from .report import report_data, report_path, write_report

logger = logging.getLogger(__name__)


class Builder:
    """
    Turns a recipe into an image: compile the plan, run the pipeline, publish
    the final snapshot and write the build report. Every invocation is a full
    run; nothing is reused from earlier builds.
    """

    def __init__(
        self,
        config: Config,
        runner: StepRunner,
        tag: Optional[str] = None,
        output_dir: Optional[str] = None,
        context_dir: Optional[str] = None,
        write: bool = True,
    ):
        self.config = config
        self.runner = runner
        self.tag = tag if tag is not None else f"{config.name}:{constants.DEFAULT_TAG}"
        self.output_dir = Path(output_dir or constants.OUTPUT_DIR)
        self.context_dir = context_dir
        self.write = write
        self.pipeline: Optional[Pipeline] = None
        self.report: Optional[Path] = None
        logger.debug(f"Builder initialized for recipe '{self.config.name}'. Output dir: '{self.output_dir}'")

    def plan(self) -> List[StepSpec]:
        return Planner(self.config, self.context_dir).compile()

    def run(self) -> BuildResult:
        """Orchestrates the build; raises StepFailure or BuildCancelled when it does not succeed."""
        logger.info(f"[Builder] Starting build for '{self.config.name}' from '{self.config.base}'...")
        steps = self.plan()
        self.pipeline = Pipeline(self.config.base, steps, self.runner)
        try:
            result = self.pipeline.run()
        except (StepFailure, BuildCancelled) as e:
            if e.result is not None:
                self._report(e.result, error=e)
            raise

        self.runner.finalize(result.snapshot, self.tag)
        self._report(result)
        logger.info(f"[Builder] Build finished: '{result.snapshot.active}' ({len(result.snapshot)} layers).")
        return result

    def cancel(self) -> None:
        if self.pipeline is not None:
            self.pipeline.cancel()

    def _report(self, result: BuildResult, error=None):
        if not self.write:
            return
        data = report_data(
            self.config.name,
            result,
            labels=self.config.labels,
            tag=self.tag if result.succeeded else None,
            error=error,
        )
        self.report = write_report(report_path(self.output_dir, self.config.name), data)
