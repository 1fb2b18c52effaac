import logging
import os
import threading
from typing import Optional

from python_on_whales import DockerClient, DockerException

from ..datacls import BaseImage, Snapshot, StepAction, StepOutcome, StepSpec
from ..exceptions import RunnerError

logger = logging.getLogger(__name__)

STEP_LABEL = "layerbuild.step"


class DockerRunner:
    """
    Runs each step in a throwaway container and commits the result.

    The container for step k is created from the image committed by step
    k-1, so the committed image id is the layer id. Containers are removed
    after every step; committed images are left alone since later layers
    build on them.
    """

    def __init__(self, client: Optional[DockerClient] = None, pull: bool = True):
        self.client = client or DockerClient()
        self.pull = pull
        self._container = None
        self._lock = threading.RLock()
        self._cancelled = threading.Event()

    def resolve_base(self, base: BaseImage) -> str:
        ref = base.reference
        try:
            if self.pull:
                logger.info(f"[Docker] Pulling base image '{ref}'...")
                image = self.client.image.pull(ref, quiet=True)
            else:
                image = self.client.image.inspect(ref)
        except DockerException as e:
            raise RunnerError(f"Cannot resolve base image '{ref}': {e}") from e
        logger.info(f"[Docker] Base '{ref}' resolved to '{image.id}'.")
        return image.id

    def run(self, step: StepSpec, parent: str, index: int) -> StepOutcome:
        try:
            if step.action is StepAction.COPY:
                return self._copy(step, parent)
            return self._exec(step, parent)
        except DockerException as e:
            raise RunnerError(f"Docker failed while running step '{step.name}': {e}") from e

    def _create(self, step: StepSpec, parent: str, argv):
        # RUN semantics: the image's own entrypoint is bypassed
        container = self.client.container.create(
            parent,
            argv[1:],
            entrypoint=argv[0],
            workdir=step.workdir,
            envs=step.env,
            labels={STEP_LABEL: step.name},
        )
        with self._lock:
            self._container = container
        return container

    def _release(self, container):
        with self._lock:
            self._container = None
        try:
            self.client.container.remove(container, force=True)
        except DockerException as e:
            logger.warning(f"[Docker] Failed to remove container {container.id[:12]}: {e}")

    def _commit(self, container, step: StepSpec) -> str:
        image = self.client.container.commit(container, message=f"layerbuild: {step.name}")
        logger.debug(f"[Docker] Step '{step.name}' committed as '{image.id}'.")
        return image.id

    def _exec(self, step: StepSpec, parent: str) -> StepOutcome:
        logger.info(f"[Docker] {step.workdir}$ {' '.join(step.argv)}")
        container = self._create(step, parent, step.argv)
        timer = None
        timed_out = threading.Event()
        try:
            if self._cancelled.is_set():
                return StepOutcome(exit_status=-15, output="cancelled")
            if step.timeout:
                def expire():
                    timed_out.set()
                    self._kill(container)
                timer = threading.Timer(step.timeout, expire)
                timer.daemon = True
                timer.start()
            self.client.container.start(container)
            exit_status = self.client.container.wait(container)
            output = self.client.container.logs(container)
            if timed_out.is_set():
                output = f"{output}\nStep '{step.name}' timed out after {step.timeout}s\n"
                if exit_status == 0:
                    exit_status = 137
            layer_id = self._commit(container, step) if exit_status == 0 else None
            return StepOutcome(exit_status=exit_status, output=output, layer_id=layer_id)
        finally:
            if timer is not None:
                timer.cancel()
            self._release(container)

    def _copy(self, step: StepSpec, parent: str) -> StepOutcome:
        logger.info(f"[Docker] copy '{step.source}' -> '{step.destination}'")
        container = self._create(step, parent, ["true"])
        source = step.source
        # docker cp copies a directory's contents only when the source ends in '/.'
        if not source.endswith('/.') and os.path.isdir(source):
            source = source.rstrip('/') + '/.'
        try:
            try:
                self.client.container.copy(source, (container, step.destination))
            except DockerException as e:
                return StepOutcome(exit_status=1, output=f"copy failed: {e}\n")
            return StepOutcome(exit_status=0, layer_id=self._commit(container, step))
        finally:
            self._release(container)

    def _kill(self, container):
        try:
            self.client.container.kill(container)
        except DockerException as e:
            logger.warning(f"[Docker] Failed to kill container {container.id[:12]}: {e}")

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            container = self._container
        if container is not None:
            logger.warning(f"[Docker] Killing running step container {container.id[:12]}.")
            self._kill(container)

    def finalize(self, snapshot: Snapshot, tag: Optional[str] = None) -> None:
        if not tag:
            logger.info(f"[Docker] Final image is '{snapshot.active}' (untagged).")
            return
        try:
            self.client.image.tag(snapshot.active, tag)
        except DockerException as e:
            raise RunnerError(f"Cannot tag image '{snapshot.active}' as '{tag}': {e}") from e
        logger.info(f"[Docker] Final image '{snapshot.active}' tagged as '{tag}'.")
