"""
Tests for the test executor: worker pool, retries, flakiness and artifacts.
"""

import asyncio
import sys
import time

import pytest

from runwright.core.exceptions import TestExecutionError
from runwright.execution.artifacts import ArtifactManager
from runwright.execution.discovery import discover_units
from runwright.execution.engine import ExecutionEngine, PlaywrightCommandEngine
from runwright.execution.executor import TestExecutor
from runwright.execution.models import ArtifactType, AttemptOutcome, TestStatus
from runwright.planning.models import DEFAULT_TEST_MATCH, EnvironmentDescriptor


class BlockingEngine(ExecutionEngine):
    """Passes the listed units immediately and blocks on everything else."""

    def __init__(self, instant):
        self.instant = set(instant)
        self.started = []

    async def run_attempt(self, context):
        self.started.append(context.unit.unit_id)
        if context.unit.unit_id not in self.instant:
            await asyncio.Event().wait()
        return AttemptOutcome(passed=True, duration_ms=1.0)


class HangingEngine(ExecutionEngine):
    """Writes the requested artifacts, then never finishes."""

    def __init__(self):
        self.dirs = []

    async def run_attempt(self, context):
        self.dirs.append(context.artifacts_dir)
        (context.artifacts_dir / "video.webm").write_bytes(b"v")
        if context.capture.trace:
            (context.artifacts_dir / "trace.zip").write_bytes(b"t")
        if context.capture.screenshot:
            (context.artifacts_dir / "test-failed-1.png").write_bytes(b"s")
        await asyncio.Event().wait()


@pytest.fixture
def units(e2e_dir):
    return discover_units(e2e_dir, DEFAULT_TEST_MATCH)


@pytest.fixture
def executor_factory(tmp_path):
    def _factory(engine, **kwargs):
        return TestExecutor(
            engine=engine,
            artifact_manager=ArtifactManager(tmp_path / "test-results", "run-1"),
            run_id="run-1",
            **kwargs,
        )

    return _factory


def by_unit(results):
    return {result.unit_id: result for result in results}


class TestStatuses:
    """Test final status classification."""

    @pytest.mark.asyncio
    async def test_all_pass(self, make_plan, auth_state, units, scripted_engine, executor_factory):
        engine = scripted_engine()

        results = await executor_factory(engine).run(make_plan(retry_count=1), auth_state, units)

        assert [r.status for r in results] == [TestStatus.PASSED] * 3
        assert all(r.attempts == 1 for r in results)
        assert all(r.artifacts == [] for r in results)
        assert len(engine.calls) == 3

    @pytest.mark.asyncio
    async def test_fail_then_pass_is_flaky(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(script={"auth.spec.js": [False, True]})

        results = by_unit(
            await executor_factory(engine).run(make_plan(retry_count=1), auth_state, units)
        )

        flaky = results["auth.spec.js"]
        assert flaky.status == TestStatus.FLAKY
        assert flaky.attempts == 2
        assert flaky.error_message is None
        assert [a.artifact_type for a in flaky.artifacts] == [ArtifactType.TRACE]
        assert flaky.artifacts[0].attempt == 2
        assert flaky.artifacts[0].path.exists()

    @pytest.mark.asyncio
    async def test_failure_without_retries(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(script={"billing.spec.js": [False]})

        results = by_unit(
            await executor_factory(engine).run(make_plan(retry_count=0), auth_state, units)
        )

        failed = results["billing.spec.js"]
        assert failed.status == TestStatus.FAILED
        assert failed.attempts == 1
        assert failed.error_message == "expect(locator).toBeVisible() failed"
        assert failed.get_artifacts_by_type(ArtifactType.TRACE) == []
        assert len(failed.get_artifacts_by_type(ArtifactType.SCREENSHOT)) == 1
        assert len(failed.get_artifacts_by_type(ArtifactType.VIDEO)) == 1

    @pytest.mark.asyncio
    async def test_failure_after_retries_keeps_one_of_each(
        self, make_plan, auth_state, units, scripted_engine, executor_factory, tmp_path
    ):
        engine = scripted_engine(script={"clients.spec.js": [False]})

        results = by_unit(
            await executor_factory(engine).run(make_plan(retry_count=2), auth_state, units)
        )

        failed = results["clients.spec.js"]
        assert failed.status == TestStatus.FAILED
        assert failed.attempts == 3
        traces = failed.get_artifacts_by_type(ArtifactType.TRACE)
        screenshots = failed.get_artifacts_by_type(ArtifactType.SCREENSHOT)
        videos = failed.get_artifacts_by_type(ArtifactType.VIDEO)
        assert len(traces) == 1 and traces[0].attempt == 2
        assert len(screenshots) == 1 and screenshots[0].attempt == 3
        assert len(videos) == 1 and videos[0].attempt == 3

        unit_dir = tmp_path / "test-results" / "run-1" / "chromium" / "clients.spec.js"
        on_disk = sorted(p.relative_to(unit_dir).as_posix() for p in unit_dir.rglob("*.*"))
        assert on_disk == [
            "attempt-2/trace.zip",
            "attempt-3/test-failed-1.png",
            "attempt-3/video.webm",
        ]

    @pytest.mark.asyncio
    async def test_passing_units_leave_no_artifacts(
        self, make_plan, auth_state, units, scripted_engine, executor_factory, tmp_path
    ):
        await executor_factory(scripted_engine()).run(make_plan(), auth_state, units)

        assert list((tmp_path / "test-results").rglob("*.webm")) == []


class TestDispatch:
    """Test ordering and the worker pool."""

    @pytest.mark.asyncio
    async def test_serial_order_is_environment_major(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        plan = make_plan(
            target_environments=(
                EnvironmentDescriptor(name="chromium"),
                EnvironmentDescriptor(name="firefox"),
            )
        )
        engine = scripted_engine()

        results = await executor_factory(engine).run(plan, auth_state, units)

        expected = [
            (env, unit.unit_id) for env in ("chromium", "firefox") for unit in units
        ]
        assert [(r.environment, r.unit_id) for r in results] == expected
        assert [(c.environment.name, c.unit.unit_id) for c in engine.calls] == expected
        assert engine.max_active == 1

    @pytest.mark.asyncio
    async def test_repeated_serial_runs_are_identical(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        orders = []
        for _ in range(3):
            engine = scripted_engine()
            await executor_factory(engine).run(make_plan(), auth_state, units)
            orders.append([c.unit.unit_id for c in engine.calls])

        assert orders[0] == orders[1] == orders[2]

    @pytest.mark.asyncio
    async def test_parallel_workers_run_concurrently(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        plan = make_plan(
            parallel=True,
            worker_count=3,
            target_environments=(
                EnvironmentDescriptor(name="chromium"),
                EnvironmentDescriptor(name="webkit"),
            ),
        )
        engine = scripted_engine(delay=0.05)

        results = await executor_factory(engine).run(plan, auth_state, units)

        assert engine.max_active == 3
        assert len(results) == 6
        assert [(r.environment, r.unit_id) for r in results] == [
            (env, unit.unit_id) for env in ("chromium", "webkit") for unit in units
        ]
        assert {r.worker_index for r in results} <= {0, 1, 2}

    @pytest.mark.asyncio
    async def test_contexts_share_auth_state(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(script={"auth.spec.js": [False, True]})

        await executor_factory(engine).run(make_plan(retry_count=1), auth_state, units)

        assert all(c.auth_state == auth_state for c in engine.calls)
        assert all(c.storage_state_path == auth_state.storage_path for c in engine.calls)
        retried = [c for c in engine.calls if c.unit.unit_id == "auth.spec.js"]
        assert [c.attempt for c in retried] == [1, 2]
        assert retried[0].artifacts_dir != retried[1].artifacts_dir
        assert retried[1].is_retry and retried[1].is_last_attempt

    @pytest.mark.asyncio
    async def test_no_units(self, make_plan, auth_state, scripted_engine, executor_factory):
        assert await executor_factory(scripted_engine()).run(make_plan(), auth_state, []) == []


class TestContainment:
    """Test that attempt failures never escape the executor."""

    @pytest.mark.asyncio
    async def test_attempt_timeout_is_a_failure(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(delay=5.0)

        results = await executor_factory(engine, attempt_grace_ms=50).run(
            make_plan(timeout_ms=50, retry_count=1), auth_state, units[:1]
        )

        assert results[0].status == TestStatus.FAILED
        assert results[0].attempts == 2
        assert results[0].error_message == "Test timeout of 50ms exceeded"

    @pytest.mark.asyncio
    async def test_timed_out_attempt_artifacts_follow_policy(
        self, make_plan, auth_state, units, executor_factory
    ):
        engine = HangingEngine()

        results = await executor_factory(engine, attempt_grace_ms=50).run(
            make_plan(timeout_ms=50, retry_count=1), auth_state, units[:1]
        )

        result = results[0]
        assert result.status == TestStatus.FAILED
        assert len(result.get_artifacts_by_type(ArtifactType.SCREENSHOT)) == 1
        assert len(result.get_artifacts_by_type(ArtifactType.VIDEO)) == 1
        assert len(result.get_artifacts_by_type(ArtifactType.TRACE)) == 1
        assert {a.attempt for a in result.artifacts} == {2}
        # The first attempt's video was discarded from disk
        assert not (engine.dirs[0] / "video.webm").exists()

    @pytest.mark.asyncio
    async def test_engine_exception_is_contained(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(errors={"billing.spec.js": RuntimeError("browser crashed")})

        results = by_unit(await executor_factory(engine).run(make_plan(), auth_state, units))

        assert results["billing.spec.js"].status == TestStatus.FAILED
        assert results["billing.spec.js"].error_message == "RuntimeError: browser crashed"
        assert results["auth.spec.js"].status == TestStatus.PASSED
        assert results["clients.spec.js"].status == TestStatus.PASSED

    @pytest.mark.asyncio
    async def test_execution_error_message(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine(
            errors={"auth.spec.js": TestExecutionError("Failed to start test runner")}
        )

        results = by_unit(await executor_factory(engine).run(make_plan(), auth_state, units))

        assert results["auth.spec.js"].error_message == "Failed to start test runner"


class TestInterruption:
    """Test cancellation and the global timeout."""

    @pytest.mark.asyncio
    async def test_cancel_marks_in_flight_and_pending_skipped(
        self, make_plan, auth_state, units, executor_factory
    ):
        engine = BlockingEngine(instant={"auth.spec.js"})
        executor = executor_factory(engine)
        asyncio.get_running_loop().call_later(0.1, executor.cancel, "SIGINT received")

        results = by_unit(await executor.run(make_plan(), auth_state, units))

        assert results["auth.spec.js"].status == TestStatus.PASSED
        assert results["billing.spec.js"].status == TestStatus.SKIPPED
        assert results["billing.spec.js"].attempts == 1
        assert results["billing.spec.js"].error_message == "SIGINT received"
        assert results["clients.spec.js"].status == TestStatus.SKIPPED
        assert results["clients.spec.js"].attempts == 0
        assert engine.started == ["auth.spec.js", "billing.spec.js"]
        assert executor.interrupted is True
        assert executor.interrupt_reason == "SIGINT received"

    @pytest.mark.asyncio
    async def test_cancel_before_run_dispatches_nothing(
        self, make_plan, auth_state, units, scripted_engine, executor_factory
    ):
        engine = scripted_engine()
        executor = executor_factory(engine)
        executor.cancel("shutdown requested")

        results = await executor.run(make_plan(), auth_state, units)

        assert engine.calls == []
        assert [r.status for r in results] == [TestStatus.SKIPPED] * 3

    @pytest.mark.asyncio
    async def test_global_timeout(self, make_plan, auth_state, units, executor_factory):
        engine = BlockingEngine(instant=set())
        executor = executor_factory(engine)

        results = await executor.run(
            make_plan(parallel=True, worker_count=2, global_timeout_ms=100),
            auth_state,
            units,
        )

        assert [r.status for r in results] == [TestStatus.SKIPPED] * 3
        assert "global timeout of 100ms exceeded" in executor.interrupt_reason
        assert sorted(engine.started) == ["auth.spec.js", "billing.spec.js"]

    @pytest.mark.asyncio
    async def test_first_cancel_reason_wins(self, scripted_engine, executor_factory):
        executor = executor_factory(scripted_engine())

        executor.cancel("SIGINT received")
        executor.cancel("SIGTERM received")

        assert executor.interrupt_reason == "SIGINT received"


HANGING_RUNNER = (
    "import os, pathlib, subprocess, sys\n"
    "out = pathlib.Path([a.split('=', 1)[1] for a in sys.argv if a.startswith('--output=')][0])\n"
    "(out / 'test-failed-1.png').write_bytes(b's')\n"
    "(out / 'video.webm').write_bytes(b'v')\n"
    "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
    "pathlib.Path(os.environ['CHILD_PID_FILE']).write_text(str(child.pid))\n"
    "child.wait()\n"
)


@pytest.mark.integration
@pytest.mark.skipif(sys.platform == "win32", reason="requires process groups")
class TestRunnerSubprocessTimeout:
    """Test a runner subprocess that outlives its attempt."""

    @pytest.mark.asyncio
    async def test_timeout_kills_runner_tree_and_keeps_artifacts(
        self, make_plan, auth_state, units, executor_factory, tmp_path, wait_for_exit
    ):
        pid_file = tmp_path / "child.pid"
        engine = PlaywrightCommandEngine(
            command=[sys.executable, "-c", HANGING_RUNNER],
            extra_env={"CHILD_PID_FILE": str(pid_file)},
        )
        started = time.monotonic()

        results = await executor_factory(engine, attempt_grace_ms=1000).run(
            make_plan(timeout_ms=1000, retry_count=0), auth_state, units[:1]
        )

        assert time.monotonic() - started < 10
        result = results[0]
        assert result.status == TestStatus.FAILED
        assert result.error_message == "Test timeout of 1000ms exceeded"
        screenshots = result.get_artifacts_by_type(ArtifactType.SCREENSHOT)
        videos = result.get_artifacts_by_type(ArtifactType.VIDEO)
        assert len(screenshots) == 1
        assert len(videos) == 1
        assert screenshots[0].path.exists()
        assert await wait_for_exit(int(pid_file.read_text()))
