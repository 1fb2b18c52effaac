import pytest

from layerbuild.builder.pipeline import Pipeline, output_tail
from layerbuild.datacls import BuildState, StepOutcome, StepSpec
from layerbuild.exceptions import (
    BuildCancelled,
    RecipeDefinitionError,
    RunnerError,
    SnapshotError,
    StepFailure,
)
from layerbuild.runners import ScriptedRunner
from layerbuild.utils import current_step


def run_pipeline(base, steps, **runner_kwargs):
    runner = ScriptedRunner(**runner_kwargs)
    return Pipeline(base, steps, runner).run(), runner


class TestPipelineSuccess:

    def test_all_steps_succeed(self, base_image, scenario_steps):
        """base + one layer per step, in step order"""
        result, runner = run_pipeline(base_image, scenario_steps, base_id="S0")

        assert result.state is BuildState.SUCCEEDED
        assert result.succeeded
        snapshot = result.snapshot
        assert snapshot.base_id == "S0"
        assert [layer.step for layer in snapshot.layers] == ["install", "copy", "build"]
        assert [layer.index for layer in snapshot.layers] == [0, 1, 2]
        assert len(snapshot) == 3
        assert runner.trace == ["install", "copy", "build"]
        assert result.executed == ["install", "copy", "build"]

    def test_layers_chain_to_their_predecessor(self, base_image, scenario_steps):
        result, _ = run_pipeline(base_image, scenario_steps, base_id="S0")
        chain = result.snapshot.chain
        assert chain[0] == "S0"
        for layer, parent in zip(result.snapshot.layers, chain):
            assert layer.parent == parent
        assert result.snapshot.active == chain[-1]

    def test_layers_record_their_command(self, base_image, scenario_steps):
        result, _ = run_pipeline(base_image, scenario_steps)
        assert result.snapshot.layers[2].created_by == ("cargo", "build")

    def test_trace_entries_succeeded(self, base_image, scenario_steps):
        result, _ = run_pipeline(base_image, scenario_steps)
        assert [entry.status for entry in result.trace] == [BuildState.SUCCEEDED] * 3
        assert all(entry.exit_status == 0 for entry in result.trace)
        assert result.failed_step is None

    def test_empty_step_list_yields_base_snapshot(self, base_image):
        result, runner = run_pipeline(base_image, [], base_id="S0")
        assert result.state is BuildState.SUCCEEDED
        assert result.snapshot.layers == ()
        assert result.snapshot.active == "S0"
        assert result.snapshot.chain == ["S0"]
        assert runner.trace == []

    def test_reordered_steps_run_in_new_order(self, base_image, scenario_steps):
        """No implicit reordering: copy before install runs copy first"""
        install, copy, build = scenario_steps
        result, runner = run_pipeline(base_image, [copy, install, build])
        assert runner.trace == ["copy", "install", "build"]
        assert [layer.step for layer in result.snapshot.layers] == ["copy", "install", "build"]

    def test_same_plan_yields_same_chain(self, base_image, scenario_steps):
        first, _ = run_pipeline(base_image, scenario_steps)
        second, _ = run_pipeline(base_image, scenario_steps)
        assert first.snapshot.chain == second.snapshot.chain


class TestPipelineFailure:

    def test_first_step_failure_stops_pipeline(self, base_image, scenario_steps):
        runner = ScriptedRunner(exit_codes={"install": 1}, base_id="S0")
        pipeline = Pipeline(base_image, scenario_steps, runner)

        with pytest.raises(StepFailure, match="Step 1 'install' failed with exit status 1") as exc_info:
            pipeline.run()

        failure = exc_info.value
        assert failure.index == 0
        assert failure.name == "install"
        assert failure.exit_status == 1
        assert runner.trace == ["install"]
        assert pipeline.state is BuildState.FAILED
        assert failure.result.state is BuildState.FAILED
        assert failure.result.failed_step == 0
        assert failure.result.snapshot.layers == ()
        assert failure.result.snapshot.active == "S0"

    @pytest.mark.parametrize("failing, index", [("install", 0), ("copy", 1), ("build", 2)])
    def test_steps_after_failure_never_run(self, base_image, scenario_steps, failing, index):
        runner = ScriptedRunner(exit_codes={failing: 2})
        with pytest.raises(StepFailure) as exc_info:
            Pipeline(base_image, scenario_steps, runner).run()

        names = [step.name for step in scenario_steps]
        assert runner.trace == names[:index + 1]
        assert exc_info.value.index == index
        assert [layer.step for layer in exc_info.value.result.snapshot.layers] == names[:index]
        assert exc_info.value.result.trace[-1].status is BuildState.FAILED
        assert exc_info.value.result.trace[-1].exit_status == 2

    def test_failure_carries_output(self, base_image, scenario_steps):
        runner = ScriptedRunner(
            exit_codes={"build": 101},
            outputs={"build": "error[E0425]: cannot find value `x`\n"},
        )
        with pytest.raises(StepFailure) as exc_info:
            Pipeline(base_image, scenario_steps, runner).run()
        assert "E0425" in exc_info.value.output

    def test_runner_error_becomes_step_failure(self, base_image, scenario_steps):
        runner = ScriptedRunner(exit_codes={"copy": RunnerError("engine unreachable")})
        with pytest.raises(StepFailure, match="no exit status") as exc_info:
            Pipeline(base_image, scenario_steps, runner).run()

        failure = exc_info.value
        assert failure.index == 1
        assert failure.exit_status is None
        assert "engine unreachable" in failure.output
        assert isinstance(failure.__cause__, RunnerError)
        assert runner.trace == ["install", "copy"]

    def test_success_without_layer_is_rejected(self, base_image, scenario_steps):
        class NoLayerRunner(ScriptedRunner):
            def run(self, step, parent, index):
                return StepOutcome(exit_status=0)

        with pytest.raises(SnapshotError, match="produced no layer"):
            Pipeline(base_image, scenario_steps, NoLayerRunner()).run()

    def test_duplicate_step_names_rejected(self, base_image):
        steps = [StepSpec(name="same", command=["true"]), StepSpec(name="same", command=["false"])]
        with pytest.raises(RecipeDefinitionError, match="Duplicate step name 'same'"):
            Pipeline(base_image, steps, ScriptedRunner())


class TestPipelineCancel:

    def test_cancel_during_step(self, base_image, scenario_steps):
        runner = ScriptedRunner()
        pipeline = Pipeline(base_image, scenario_steps, runner)
        runner.on_run = lambda step: pipeline.cancel() if step.name == "copy" else None

        with pytest.raises(BuildCancelled, match="during step 2 'copy'") as exc_info:
            pipeline.run()

        result = exc_info.value.result
        assert pipeline.state is BuildState.CANCELLED
        assert result.state is BuildState.CANCELLED
        assert runner.trace == ["install", "copy"]
        assert [layer.step for layer in result.snapshot.layers] == ["install"]
        assert result.trace[-1].status is BuildState.CANCELLED

    def test_cancel_before_run(self, base_image, scenario_steps):
        runner = ScriptedRunner(base_id="S0")
        pipeline = Pipeline(base_image, scenario_steps, runner)
        pipeline.cancel()

        with pytest.raises(BuildCancelled, match="before step 1") as exc_info:
            pipeline.run()
        assert runner.trace == []
        assert exc_info.value.result.snapshot.active == "S0"

    def test_cancel_is_idempotent(self, base_image, scenario_steps):
        pipeline = Pipeline(base_image, scenario_steps, ScriptedRunner())
        pipeline.cancel()
        pipeline.cancel()
        assert pipeline.cancelled


@pytest.mark.parametrize("output, lines, expected", [
    ("", 5, ""),
    ("a\nb\nc\n", 2, "b\nc"),
    ("only", 5, "only"),
])
def test_output_tail(output, lines, expected):
    assert output_tail(output, lines) == expected


def test_runner_records_tagged_with_step(base_image, scenario_steps):
    seen = []
    runner = ScriptedRunner(on_run=lambda step: seen.append(current_step()))
    Pipeline(base_image, scenario_steps, runner).run()
    assert seen == [step.name for step in scenario_steps]
    assert current_step() is None
