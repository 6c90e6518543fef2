"""
Test run orchestration.

Sequences one run: resolve the plan, bring up the system under test,
provision the shared session (barrier before any worker starts), execute,
and shut the server down after every worker has drained.
"""

import asyncio
import signal
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from .auth.models import AuthState
from .auth.provisioner import AuthStateProvisioner, FormLoginFlow
from .core.exceptions import (
    FATAL_ERRORS,
    RunInterrupted,
    RunwrightError,
    ServerShutdownError,
)
from .core.logging_config import get_logger
from .core.workflow import RunContext
from .execution.artifacts import ArtifactManager
from .execution.discovery import discover_units
from .execution.engine import ExecutionEngine, PlaywrightCommandEngine
from .execution.executor import TestExecutor
from .execution.models import ExecutionResult, TestUnit
from .planning.models import RunConfig
from .planning.planner import RunPlanner
from .reporting.emitter import ReportEmitter
from .reporting.models import RunSummary
from .server.lifecycle import ServerLifecycleManager
from .server.models import ServerHandle

ProvisionerFactory = Callable[[RunConfig, str], AuthStateProvisioner]


@dataclass
class RunOutcome:
    """Everything a caller needs to know about a finished run."""

    run_id: str
    exit_code: int
    results: List[ExecutionResult] = field(default_factory=list)
    summary: Optional[RunSummary] = None
    plan: Optional[RunConfig] = None
    error: Optional[RunwrightError] = None
    report_path: Optional[Path] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "exit_code": self.exit_code,
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error.to_dict() if self.error else None,
            "report_path": str(self.report_path) if self.report_path else None,
        }


def default_provisioner(plan: RunConfig, run_id: str) -> AuthStateProvisioner:
    return AuthStateProvisioner(
        storage_path=plan.auth.storage_state_path,
        login_flow=FormLoginFlow.from_spec(plan.auth),
        timeout_ms=plan.auth.timeout_ms,
        run_id=run_id,
    )


class TestRunOrchestrator:
    """
    Runs a complete test run with strict phase ordering.

    Fatal errors (configuration, server start, authentication) abort before
    any worker is dispatched and yield exit code 1 with no results.
    """

    __test__ = False

    def __init__(
        self,
        planner: Optional[RunPlanner] = None,
        engine: Optional[ExecutionEngine] = None,
        server_manager: Optional[ServerLifecycleManager] = None,
        provisioner_factory: Optional[ProvisionerFactory] = None,
        run_context: Optional[RunContext] = None,
        install_signal_handlers: bool = True,
    ):
        self.run_context = run_context or RunContext()
        self.run_id = self.run_context.run_id
        self.planner = planner or RunPlanner()
        self.engine = engine or PlaywrightCommandEngine()
        self.server_manager = server_manager or ServerLifecycleManager(run_id=self.run_id)
        self.provisioner_factory = provisioner_factory or default_provisioner
        self.install_signal_handlers = install_signal_handlers
        self.logger = get_logger("runwright.runner", run_id=self.run_id)

        self._executor: Optional[TestExecutor] = None
        self._phase_task: Optional[asyncio.Task] = None
        self._interrupt_reason: Optional[str] = None

    async def run(self, raw: Mapping[str, Any]) -> RunOutcome:
        """
        Execute one run from a raw configuration mapping.

        SIGINT and SIGTERM are handled for the whole run. Before dispatch an
        interrupt cancels the current phase; during execution it stops the
        worker pool. Either way an owned server is shut down.

        Returns:
            Run outcome with exit code, results and summary
        """
        started = time.monotonic()
        plan: Optional[RunConfig] = None
        handle: Optional[ServerHandle] = None
        self._interrupt_reason = None
        self._phase_task = asyncio.current_task()

        with self._signal_handlers():
            try:
                plan = self.planner.resolve(raw)
                units = discover_units(plan.test_directory, plan.test_match, plan.forbid_only)
                handle = await self._ensure_server(plan)
                auth_state = await self._provision(plan)
                executor = TestExecutor(
                    engine=self.engine,
                    artifact_manager=ArtifactManager(plan.artifacts_dir, self.run_id),
                    run_id=self.run_id,
                )
                results = await self._execute(executor, plan, auth_state, units)
            except FATAL_ERRORS as e:
                return self._fatal(e, plan)
            except asyncio.CancelledError:
                if self._interrupt_reason is None:
                    raise
                return self._fatal(
                    RunInterrupted(
                        f"Interrupted before tests were dispatched ({self._interrupt_reason})",
                        reason=self._interrupt_reason,
                    ),
                    plan,
                )
            finally:
                self._phase_task = None
                await self._shutdown(handle)

        summary = RunSummary.from_results(
            self.run_id,
            results,
            duration_ms=(time.monotonic() - started) * 1000.0,
            interrupt_reason=executor.interrupt_reason,
        )
        outcome = RunOutcome(
            run_id=self.run_id,
            exit_code=summary.exit_code,
            results=results,
            summary=summary,
            plan=plan,
        )

        try:
            outcome.report_path = ReportEmitter(plan.report_dir).emit(summary, results)
        except RunwrightError as e:
            self.logger.error(e.message, extra={"metadata": e.to_dict()})

        self.logger.info(
            f"Run finished: {ReportEmitter.format_console_summary(summary)}",
            extra={"metadata": summary.to_dict()},
        )
        return outcome

    async def _ensure_server(self, plan: RunConfig) -> Optional[ServerHandle]:
        if plan.web_server is None:
            return None
        return await self.server_manager.ensure_ready(
            url=plan.web_server.url,
            start_command=plan.web_server.command,
            timeout_ms=plan.web_server.timeout_ms,
            reuse_if_running=plan.web_server.reuse_existing_server,
        )

    async def _provision(self, plan: RunConfig) -> AuthState:
        if not plan.auth.enabled:
            self.logger.info("Authentication provisioning disabled")
            return AuthState.empty(plan.base_url)
        provisioner = self.provisioner_factory(plan, self.run_id)
        return await provisioner.provision(plan.base_url)

    async def _execute(
        self,
        executor: TestExecutor,
        plan: RunConfig,
        auth_state: AuthState,
        units: List[TestUnit],
    ) -> List[ExecutionResult]:
        # From here on interrupts stop the pool instead of cancelling the run
        self._phase_task = None
        self._executor = executor
        try:
            return await executor.run(plan, auth_state, units)
        finally:
            self._executor = None

    def interrupt(self, reason: str = "interrupted") -> None:
        """Abort the run; the server is still shut down."""
        self.logger.warning(f"Run interrupted: {reason}")
        if self._executor is not None:
            self._executor.cancel(reason)
        elif self._phase_task is not None and self._interrupt_reason is None:
            self._interrupt_reason = reason
            self._phase_task.cancel()

    async def _shutdown(self, handle: Optional[ServerHandle]) -> None:
        if handle is None:
            return
        try:
            await self.server_manager.shutdown(handle)
        except ServerShutdownError as e:
            self.logger.warning(e.message, extra={"metadata": e.to_dict()})

    @contextmanager
    def _signal_handlers(self):
        installed = []
        if self.install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.interrupt, f"{sig.name} received")
                    installed.append(sig)
                except (NotImplementedError, RuntimeError, ValueError):
                    self.logger.debug(f"Cannot install handler for {sig.name}")
        try:
            yield
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    def _fatal(self, error: RunwrightError, plan: Optional[RunConfig]) -> RunOutcome:
        self.logger.error(
            f"Run aborted: {error.message}",
            extra={"metadata": error.to_dict()},
        )
        return RunOutcome(run_id=self.run_id, exit_code=1, plan=plan, error=error)
