"""
Test executor with a fixed-size worker pool, retries and artifact policy.

Each (environment, unit) pair is one work item. Workers take items from a
shared queue in dispatch order and run each to completion, retrying failed
attempts up to the plan's retry budget.
"""

import asyncio
import time
from typing import Dict, List, Optional, Sequence, Tuple

from ..auth.models import AuthState
from ..core.exceptions import TestExecutionError
from ..core.logging_config import get_logger, log_performance
from ..planning.models import EnvironmentDescriptor, RunConfig
from .artifacts import ArtifactManager, ArtifactPolicy
from .engine import ExecutionEngine
from .models import (
    AttemptOutcome,
    ExecutionContext,
    ExecutionResult,
    TestStatus,
    TestUnit,
)

WorkItem = Tuple[int, EnvironmentDescriptor, TestUnit]

# Runner startup on top of the test timeout the runner enforces itself
DEFAULT_ATTEMPT_GRACE_MS = 15000


class TestExecutor:
    """
    Executes discovered test units against every target environment.

    Results are returned in dispatch order (environment, then discovery
    order). With a single worker, execution order equals dispatch order.
    """

    __test__ = False

    def __init__(
        self,
        engine: ExecutionEngine,
        artifact_manager: ArtifactManager,
        policy: Optional[ArtifactPolicy] = None,
        run_id: str = "",
        attempt_grace_ms: int = DEFAULT_ATTEMPT_GRACE_MS,
    ):
        """
        Initialize the test executor.

        Args:
            engine: Engine that runs single attempts
            artifact_manager: Artifact directory layout and cleanup
            policy: Artifact capture and retention rules
            run_id: Run identifier for log correlation
            attempt_grace_ms: Extra time an attempt gets beyond the test
                timeout before it is killed
        """
        self.engine = engine
        self.artifact_manager = artifact_manager
        self.policy = policy or ArtifactPolicy()
        self.run_id = run_id
        self.attempt_grace_ms = attempt_grace_ms
        self.logger = get_logger(__name__, run_id=run_id)

        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_requested = False
        self._interrupt_reason: Optional[str] = None
        self._attempts: Dict[int, int] = {}

    @property
    def interrupted(self) -> bool:
        return self._interrupt_reason is not None

    @property
    def interrupt_reason(self) -> Optional[str]:
        return self._interrupt_reason

    def cancel(self, reason: str = "interrupted") -> None:
        """Stop dispatching; in-flight and pending units become skipped."""
        if self._interrupt_reason is None:
            self._interrupt_reason = reason
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def run(
        self,
        plan: RunConfig,
        auth_state: AuthState,
        units: Sequence[TestUnit],
    ) -> List[ExecutionResult]:
        """
        Run every unit in every target environment.

        Args:
            plan: Resolved run configuration
            auth_state: Read-only session every context is seeded with
            units: Discovered test units in discovery order

        Returns:
            One result per (environment, unit), in dispatch order
        """
        items: List[WorkItem] = []
        for environment in plan.target_environments:
            for unit in units:
                items.append((len(items), environment, unit))

        results: List[Optional[ExecutionResult]] = [None] * len(items)
        self._attempts = {}
        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        queue: asyncio.Queue = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        self.logger.info(
            f"Dispatching {len(items)} work item(s) to {plan.worker_count} worker(s)",
            extra={
                "metadata": {
                    "units": len(units),
                    "environments": list(plan.environment_names),
                    "workers": plan.worker_count,
                    "retries": plan.retry_count,
                }
            },
        )

        started = time.monotonic()
        workers = [
            asyncio.ensure_future(
                self._worker(index, queue, plan, auth_state, results)
            )
            for index in range(plan.worker_count)
        ]
        drained = asyncio.ensure_future(asyncio.wait(workers))
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        timeout = plan.global_timeout_ms / 1000.0 if plan.global_timeout_ms else None

        try:
            done, _ = await asyncio.wait(
                {drained, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if drained not in done:
                if cancelled not in done:
                    self.cancel(f"global timeout of {plan.global_timeout_ms}ms exceeded")
                self.logger.warning(
                    f"Run interrupted ({self._interrupt_reason}), stopping workers"
                )
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.wait(workers)
            await drained
            cancelled.cancel()

        for worker in workers:
            if not worker.cancelled() and worker.exception() is not None:
                raise worker.exception()

        final = [
            result if result is not None else self._skipped(item, self._attempts.get(item[0], 0))
            for item, result in zip(items, results)
        ]

        counts = {status: 0 for status in TestStatus}
        for result in final:
            counts[result.status] += 1
        log_performance(
            self.logger,
            "test_execution",
            time.monotonic() - started,
            **{status.value: count for status, count in counts.items()},
        )
        return final

    async def _worker(
        self,
        worker_index: int,
        queue: asyncio.Queue,
        plan: RunConfig,
        auth_state: AuthState,
        results: List[Optional[ExecutionResult]],
    ) -> None:
        while not self._cancel_event.is_set():
            try:
                position, environment, unit = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[position] = await self._run_unit(
                position, worker_index, environment, unit, plan, auth_state
            )

    async def _run_unit(
        self,
        position: int,
        worker_index: int,
        environment: EnvironmentDescriptor,
        unit: TestUnit,
        plan: RunConfig,
        auth_state: AuthState,
    ) -> ExecutionResult:
        max_attempts = plan.retry_count + 1
        logger = get_logger(
            __name__,
            run_id=self.run_id,
            unit_id=unit.unit_id,
            environment=environment.name,
            worker=worker_index,
        )

        kept = []
        total_ms = 0.0
        error_message = None
        status = TestStatus.FAILED
        attempt = 0

        for attempt in range(1, max_attempts + 1):
            self._attempts[position] = attempt
            context = ExecutionContext(
                run_id=self.run_id,
                unit=unit,
                environment=environment,
                base_url=plan.base_url,
                auth_state=auth_state,
                attempt=attempt,
                max_attempts=max_attempts,
                worker_index=worker_index,
                timeout_ms=plan.timeout_ms,
                artifacts_dir=self.artifact_manager.attempt_dir(
                    environment.name, unit.unit_id, attempt
                ),
                capture=self.policy.capture_for(attempt, max_attempts),
            )
            outcome = await self._run_attempt(context)
            total_ms += outcome.duration_ms

            is_final = outcome.passed or attempt == max_attempts
            keep, discard = self.policy.partition(
                outcome.artifacts,
                attempt,
                is_final=is_final,
                unit_failed=is_final and not outcome.passed,
            )
            kept.extend(keep)
            self.artifact_manager.discard(discard)

            if outcome.passed:
                status = TestStatus.PASSED if attempt == 1 else TestStatus.FLAKY
                break

            error_message = outcome.error_message
            if attempt < max_attempts:
                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed, retrying: {error_message}",
                    extra={"attempt": attempt},
                )

        logger.info(
            f"{environment.name} > {unit.unit_id}: {status.value} after {attempt} attempt(s)",
            extra={"status": status.value, "attempt": attempt},
        )

        return ExecutionResult(
            unit_id=unit.unit_id,
            file=str(unit.file),
            environment=environment.name,
            status=status,
            attempts=attempt,
            artifacts=kept,
            duration_ms=total_ms,
            error_message=None if status != TestStatus.FAILED else error_message,
            worker_index=worker_index,
        )

    async def _run_attempt(self, context: ExecutionContext) -> AttemptOutcome:
        """Run one attempt; any failure is contained in the outcome."""
        started = time.monotonic()
        budget = (context.timeout_ms + self.attempt_grace_ms) / 1000.0
        try:
            return await asyncio.wait_for(self.engine.run_attempt(context), timeout=budget)
        except asyncio.TimeoutError:
            message = f"Test timeout of {context.timeout_ms}ms exceeded"
        except TestExecutionError as e:
            message = e.message
        except Exception as e:
            self.logger.exception(f"Execution engine error for {context.unit.unit_id}")
            message = f"{type(e).__name__}: {e}"

        # Files written before the attempt died still go through the policy
        return AttemptOutcome(
            passed=False,
            duration_ms=(time.monotonic() - started) * 1000.0,
            artifacts=self.engine.collect_artifacts(context.artifacts_dir, context.attempt),
            error_message=message,
        )

    def _skipped(self, item: WorkItem, attempts: int) -> ExecutionResult:
        _, environment, unit = item
        return ExecutionResult(
            unit_id=unit.unit_id,
            file=str(unit.file),
            environment=environment.name,
            status=TestStatus.SKIPPED,
            attempts=attempts,
            error_message=self._interrupt_reason,
        )
