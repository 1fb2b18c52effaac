import logging
import os
import shutil
import subprocess
import threading
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Tuple

from ..datacls import BaseImage, Snapshot, StepAction, StepOutcome, StepSpec
from ..exceptions import RunnerError
from ..utils.digest import diff_manifests, layer_digest, scan_tree, sha256_of, tree_digest

logger = logging.getLogger(__name__)


class LocalRunner:
    """
    Runs steps as host processes against a root directory standing in for
    the image filesystem.

    A step's working directory is mapped below `rootfs` and created when
    missing, the way WORKDIR behaves in a container. Only the working
    directory is mapped: the command itself is a host binary. Layer ids are
    content digests of the tree after each step, chained to the parent.
    """

    def __init__(self, rootfs: str):
        self.rootfs = Path(rootfs).resolve()
        self.rootfs.mkdir(parents=True, exist_ok=True)
        self._manifest: Optional[Dict[str, str]] = None
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.RLock()
        self._cancelled = threading.Event()

    def host_path(self, image_path: str) -> Path:
        rel = PurePosixPath(os.path.normpath(PurePosixPath('/') / image_path)).relative_to('/')
        return self.rootfs / rel

    def resolve_base(self, base: BaseImage) -> str:
        try:
            self._manifest = scan_tree(self.rootfs)
        except OSError as e:
            raise RunnerError(f"Cannot read rootfs '{self.rootfs}': {e}") from e
        base_id = sha256_of(base.reference, tree_digest(self._manifest))
        logger.info(f"[Local] Base '{base}' is rootfs '{self.rootfs}' ({len(self._manifest)} entries).")
        return base_id

    def run(self, step: StepSpec, parent: str, index: int) -> StepOutcome:
        try:
            return self._run(step, parent)
        except OSError as e:
            raise RunnerError(f"Local runner failed on step '{step.name}': {e}") from e

    def _run(self, step: StepSpec, parent: str) -> StepOutcome:
        before = self._manifest if self._manifest is not None else scan_tree(self.rootfs)
        if step.action is StepAction.COPY:
            exit_status, output = self._copy(step)
        else:
            exit_status, output = self._exec(step)
        after = scan_tree(self.rootfs)
        self._manifest = after
        changes = tuple(diff_manifests(before, after))
        logger.debug(f"[Local] Step '{step.name}' changed {len(changes)} paths.")
        layer_id = None
        if exit_status == 0:
            layer_id = layer_digest(parent, step.argv, [tree_digest(after)])
        return StepOutcome(exit_status=exit_status, output=output, layer_id=layer_id, changes=changes)

    def _exec(self, step: StepSpec) -> Tuple[int, str]:
        cwd = self.host_path(step.workdir)
        cwd.mkdir(parents=True, exist_ok=True)
        env = {"PATH": os.environ.get("PATH", os.defpath), **step.env}
        logger.info(f"[Local] {step.workdir}$ {' '.join(step.argv)}")
        try:
            proc = subprocess.Popen(
                step.argv,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            return 127, f"{e}\n"
        except PermissionError as e:
            return 126, f"{e}\n"
        except OSError as e:
            raise RunnerError(f"Cannot start step '{step.name}': {e}") from e

        with self._lock:
            self._proc = proc
        if self._cancelled.is_set():
            proc.kill()
        try:
            output, _ = proc.communicate(timeout=step.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            output, _ = proc.communicate()
            output = f"{output or ''}\nStep '{step.name}' timed out after {step.timeout}s\n"
            logger.warning(f"[Local] Step '{step.name}' timed out after {step.timeout}s, killed.")
        finally:
            with self._lock:
                self._proc = None
        return proc.returncode, output or ""

    def _copy(self, step: StepSpec) -> Tuple[int, str]:
        source = Path(step.source)
        dest = self.host_path(step.destination)
        logger.info(f"[Local] copy '{source}' -> '{step.destination}'")

        def ignore(directory, names):
            # never copy the rootfs into itself when it lives inside the context
            return [n for n in names if (Path(directory) / n).resolve() == self.rootfs]

        try:
            if source.is_dir():
                shutil.copytree(source, dest, symlinks=True, ignore=ignore, dirs_exist_ok=True)
            else:
                if dest.is_dir() or step.destination.endswith('/'):
                    dest = dest / source.name
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, dest, follow_symlinks=False)
        except (OSError, shutil.Error) as e:
            return 1, f"copy failed: {e}\n"
        return 0, ""

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            if self._proc is not None and self._proc.poll() is None:
                logger.warning(f"[Local] Killing running step process {self._proc.pid}.")
                self._proc.kill()

    def finalize(self, snapshot: Snapshot, tag: Optional[str] = None) -> None:
        logger.info(f"[Local] Final rootfs '{self.rootfs}' is snapshot '{snapshot.active}'.")
