import os
import stat
import threading
import pytest

from layerbuild.builder.pipeline import Pipeline
from layerbuild.builder.plan import Planner
from layerbuild.datacls import BaseImage, BuildState, StepSpec
from layerbuild.config import Config
from layerbuild.exceptions import BuildCancelled, RunnerError, StepFailure
from layerbuild.runners import LocalRunner

pytestmark = pytest.mark.skipif(os.name != "posix", reason="local runner tests use /bin/sh")

SCRATCH = BaseImage.parse("scratch")


def sh(name: str, script: str, **kwargs) -> StepSpec:
    return StepSpec(name=name, command=["/bin/sh", "-c", script], **kwargs)


@pytest.fixture
def runner(tmp_path):
    return LocalRunner(str(tmp_path / "rootfs"))


class TestLocalRunner:

    def test_run_in_workdir(self, runner):
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(sh("write", "echo hi > out.txt", workdir="/app"), parent, 0)

        assert outcome.ok
        assert outcome.layer_id.startswith("sha256:")
        assert (runner.rootfs / "app" / "out.txt").read_text() == "hi\n"
        assert outcome.changes == ("A app", "A app/out.txt")

    def test_failing_step(self, runner):
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(sh("fail", "echo boom; exit 3"), parent, 0)
        assert outcome.exit_status == 3
        assert outcome.output == "boom\n"
        assert outcome.layer_id is None

    def test_stderr_is_captured(self, runner):
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(sh("err", "echo oops >&2; exit 1"), parent, 0)
        assert "oops" in outcome.output

    def test_missing_binary(self, runner):
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(StepSpec(name="missing", command=["lbuild-no-such-tool"]), parent, 0)
        assert outcome.exit_status == 127

    def test_env_is_explicit(self, runner, monkeypatch):
        monkeypatch.setenv("LBUILD_AMBIENT", "leaked")
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(
            sh("env", 'echo "$GREETING ${LBUILD_AMBIENT:-unset}"', env={"GREETING": "hello"}),
            parent,
            0,
        )
        assert outcome.output == "hello unset\n"

    def test_copy_preserves_mode(self, runner, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        script = src / "build.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        (src / "Cargo.toml").write_text("[package]\n")

        parent = runner.resolve_base(SCRATCH)
        step = StepSpec(
            name="copy", action="copy", workdir="/app",
            command=["copy", str(src), "/app"], source=str(src), destination="/app",
        )
        outcome = runner.run(step, parent, 0)

        assert outcome.ok
        copied = runner.rootfs / "app" / "build.sh"
        assert stat.S_IMODE(copied.stat().st_mode) == 0o755
        assert (runner.rootfs / "app" / "Cargo.toml").read_text() == "[package]\n"
        assert "A app/build.sh" in outcome.changes

    def test_copy_single_file_into_directory(self, runner, tmp_path):
        src = tmp_path / "Cargo.toml"
        src.write_text("[package]\n")
        parent = runner.resolve_base(SCRATCH)
        step = StepSpec(
            name="copy", action="copy",
            command=["copy", str(src), "/app/"], source=str(src), destination="/app/",
        )
        assert runner.run(step, parent, 0).ok
        assert (runner.rootfs / "app" / "Cargo.toml").exists()

    def test_copy_skips_rootfs_inside_context(self, tmp_path):
        runner = LocalRunner(str(tmp_path / "output" / "rootfs"))
        (tmp_path / "main.rs").write_text("fn main() {}\n")
        parent = runner.resolve_base(SCRATCH)
        step = StepSpec(
            name="copy", action="copy", workdir="/app",
            command=["copy", str(tmp_path), "/app"], source=str(tmp_path), destination="/app",
        )
        assert runner.run(step, parent, 0).ok
        assert (runner.rootfs / "app" / "main.rs").exists()
        assert not (runner.rootfs / "app" / "output" / "rootfs").exists()

    def test_timeout_kills_step(self, runner):
        parent = runner.resolve_base(SCRATCH)
        outcome = runner.run(StepSpec(name="slow", command=["sleep", "5"], timeout=0.2), parent, 0)
        assert not outcome.ok
        assert "timed out" in outcome.output

    def test_modified_and_removed_paths(self, runner):
        parent = runner.resolve_base(SCRATCH)
        first = runner.run(sh("create", "echo a > a; echo b > b"), parent, 0)
        second = runner.run(sh("change", "echo c > a; rm b"), first.layer_id, 1)
        assert second.changes == ("M a", "D b")

    def test_workdir_blocked_by_file(self, runner):
        parent = runner.resolve_base(SCRATCH)
        first = runner.run(sh("file", "echo x > app"), parent, 0)
        with pytest.raises(RunnerError, match="step 'build'"):
            runner.run(sh("build", "true", workdir="/app"), first.layer_id, 1)

    def test_cancel_while_lock_is_held(self, runner):
        # a signal handler may interrupt the thread that holds the lock
        with runner._lock:
            runner.cancel()
        assert runner._cancelled.is_set()

    def test_same_tree_same_ids(self, tmp_path):
        ids = []
        for name in ("one", "two"):
            runner = LocalRunner(str(tmp_path / name))
            parent = runner.resolve_base(SCRATCH)
            ids.append((parent, runner.run(sh("write", "echo hi > f"), parent, 0).layer_id))
        assert ids[0] == ids[1]


class TestLocalPipeline:

    def test_pipeline_builds_layers(self, runner, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "main.rs").write_text("fn main() {}\n")
        steps = [
            StepSpec(
                name="copy", action="copy", workdir="/app",
                command=["copy", str(src), "/app"], source=str(src), destination="/app",
            ),
            sh("build", "cat main.rs > built.txt", workdir="/app"),
        ]
        result = Pipeline(SCRATCH, steps, runner).run()

        assert result.state is BuildState.SUCCEEDED
        assert [layer.step for layer in result.snapshot.layers] == ["copy", "build"]
        assert result.snapshot.layers[1].changes == ("A app/built.txt",)
        assert (runner.rootfs / "app" / "built.txt").read_text() == "fn main() {}\n"

    def test_dockerfile_copy_into_workdir(self, runner, tmp_path):
        (tmp_path / "Cargo.toml").write_text("[package]\n")
        dockerfile = tmp_path / "Dockerfile"
        dockerfile.write_text("FROM scratch\nWORKDIR /app\nCOPY Cargo.toml ./\nRUN ls Cargo.toml\n")
        config = Config(str(dockerfile))

        result = Pipeline(config.base, Planner(config).compile(), runner).run()

        assert result.state is BuildState.SUCCEEDED
        assert (runner.rootfs / "app").is_dir()
        assert (runner.rootfs / "app" / "Cargo.toml").read_text() == "[package]\n"

    def test_blocked_workdir_is_step_failure(self, runner):
        steps = [
            sh("file", "echo x > app"),
            sh("build", "true", workdir="/app"),
        ]
        with pytest.raises(StepFailure, match="no exit status") as exc_info:
            Pipeline(SCRATCH, steps, runner).run()

        failure = exc_info.value
        assert failure.index == 1
        assert failure.exit_status is None
        assert isinstance(failure.__cause__, RunnerError)
        assert [layer.step for layer in failure.result.snapshot.layers] == ["file"]

    def test_failure_stops_before_next_step(self, runner):
        steps = [
            sh("fail", "exit 4"),
            sh("never", "touch never-ran"),
        ]
        with pytest.raises(StepFailure) as exc_info:
            Pipeline(SCRATCH, steps, runner).run()
        assert exc_info.value.exit_status == 4
        assert not (runner.rootfs / "never-ran").exists()

    def test_cancel_kills_running_step(self, runner):
        steps = [StepSpec(name="slow", command=["sleep", "10"]), sh("never", "touch never-ran")]
        pipeline = Pipeline(SCRATCH, steps, runner)
        timer = threading.Timer(0.3, pipeline.cancel)
        timer.start()
        try:
            with pytest.raises(BuildCancelled) as exc_info:
                pipeline.run()
        finally:
            timer.cancel()
        assert exc_info.value.result.snapshot.layers == ()
        assert not (runner.rootfs / "never-ran").exists()
