"""
Execution engines.

The engine performs a single attempt of a single test unit. Browser
automation itself lives in the external test runner that the engine
invokes; Runwright only configures it and interprets the outcome.
"""

import asyncio
import json
import os
import signal
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..core.exceptions import TestExecutionError
from ..core.logging_config import get_logger
from .models import ArtifactRef, ArtifactType, AttemptOutcome, ExecutionContext

DEFAULT_COMMAND = ("npx", "playwright", "test")

ARTIFACT_SUFFIXES = {
    ".zip": ArtifactType.TRACE,
    ".png": ArtifactType.SCREENSHOT,
    ".webm": ArtifactType.VIDEO,
}

OUTPUT_TAIL_CHARS = 4000


class ExecutionEngine(ABC):
    """Runs one attempt of one test unit in an isolated context."""

    @abstractmethod
    async def run_attempt(self, context: ExecutionContext) -> AttemptOutcome:
        """
        Execute the unit described by context.

        Raises:
            TestExecutionError: If the attempt could not be run at all
        """

    @staticmethod
    def collect_artifacts(directory: Path, attempt: int) -> List[ArtifactRef]:
        """Catalog artifact files an attempt left in directory."""
        artifacts = []
        if not directory.exists():
            return artifacts
        for path in sorted(directory.rglob("*")):
            artifact_type = ARTIFACT_SUFFIXES.get(path.suffix.lower())
            if artifact_type and path.is_file():
                artifacts.append(
                    ArtifactRef(artifact_type=artifact_type, path=path, attempt=attempt)
                )
        return artifacts


class PlaywrightCommandEngine(ExecutionEngine):
    """
    Runs each attempt as a Playwright test-runner subprocess.

    Retries and parallelism are owned by Runwright, so the runner is always
    invoked with ``--retries=0 --workers=1``. The context is passed through
    environment variables the project's runner configuration reads.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_COMMAND,
        cwd: Optional[Path] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ):
        self.command = list(command)
        self.cwd = Path(cwd) if cwd else None
        self.extra_env = dict(extra_env or {})
        self.logger = get_logger(__name__)

    def build_command(self, context: ExecutionContext) -> List[str]:
        return self.command + [
            str(context.unit.file),
            "--retries=0",
            "--workers=1",
            "--reporter=line",
            f"--timeout={context.timeout_ms}",
            f"--output={context.artifacts_dir}",
        ]

    def build_env(self, context: ExecutionContext) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.extra_env)
        env.update(
            {
                "BASE_URL": context.base_url,
                "RUNWRIGHT_RUN_ID": context.run_id,
                "RUNWRIGHT_ENVIRONMENT": context.environment.name,
                "RUNWRIGHT_CAPABILITIES": json.dumps(context.environment.capabilities),
                "RUNWRIGHT_ATTEMPT": str(context.attempt),
                "RUNWRIGHT_WORKER_INDEX": str(context.worker_index),
                "RUNWRIGHT_TRACE": "on" if context.capture.trace else "off",
                "RUNWRIGHT_SCREENSHOT": (
                    "only-on-failure" if context.capture.screenshot else "off"
                ),
                "RUNWRIGHT_VIDEO": "on" if context.capture.video else "off",
            }
        )
        if context.storage_state_path:
            env["STORAGE_STATE"] = str(context.storage_state_path)
        return env

    async def run_attempt(self, context: ExecutionContext) -> AttemptOutcome:
        command = self.build_command(context)
        self.logger.debug(
            f"Running: {' '.join(command)}",
            extra={"metadata": {"unit_id": context.unit.unit_id, "attempt": context.attempt}},
        )

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self.cwd) if self.cwd else None,
                env=self.build_env(context),
                start_new_session=True,
            )
        except OSError as e:
            raise TestExecutionError(
                f"Failed to start test runner: {e}", unit_id=context.unit.unit_id
            ) from e

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            # Attempt timed out or the run was interrupted
            if process.returncode is None:
                self._kill_process_group(process)
                await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        passed = process.returncode == 0

        return AttemptOutcome(
            passed=passed,
            duration_ms=(time.monotonic() - started) * 1000.0,
            artifacts=self.collect_artifacts(context.artifacts_dir, context.attempt),
            error_message=None if passed else self._failure_message(output, process.returncode),
            exit_code=process.returncode,
            output=output[-OUTPUT_TAIL_CHARS:],
        )

    @staticmethod
    def _kill_process_group(process: asyncio.subprocess.Process) -> None:
        """SIGKILL the runner and the browsers it started."""
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass

    @staticmethod
    def _failure_message(output: str, exit_code: Optional[int]) -> str:
        lines = [line for line in output.splitlines() if line.strip()]
        for line in lines:
            if "Error" in line:
                return line.strip()
        return f"Test runner exited with code {exit_code}"
