"""
Pytest configuration and shared fixtures for Runwright tests.

Provides sample test directories, a scripted execution engine, a counting
auth provisioner and a throwaway aiohttp server.
"""

import asyncio
import os
import socket
import time
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from aiohttp import web

from runwright.auth.models import AuthState
from runwright.execution.engine import ExecutionEngine
from runwright.execution.models import ArtifactRef, ArtifactType, AttemptOutcome
from runwright.planning.models import EnvironmentDescriptor, RunConfig


class ScriptedEngine(ExecutionEngine):
    """
    Execution engine that replays scripted pass/fail outcomes.

    ``script`` maps a unit id to a list of outcomes per attempt; the last
    entry repeats. Artifacts are written the way a real runner would: video
    and trace when requested, screenshot only on a failing attempt.
    """

    def __init__(self, script=None, default=True, delay=0.0, errors=None, events=None):
        self.script = script or {}
        self.default = default
        self.delay = delay
        self.errors = errors or {}
        self.events = events if events is not None else []
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def run_attempt(self, context):
        self.calls.append(context)
        self.events.append(("attempt", context.unit.unit_id, context.attempt))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if context.unit.unit_id in self.errors:
                raise self.errors[context.unit.unit_id]

            outcomes = self.script.get(context.unit.unit_id, [self.default])
            passed = outcomes[min(context.attempt, len(outcomes)) - 1]

            artifacts = []
            if context.capture.trace:
                artifacts.append(self._write(context, "trace.zip", ArtifactType.TRACE))
            if context.capture.video:
                artifacts.append(self._write(context, "video.webm", ArtifactType.VIDEO))
            if context.capture.screenshot and not passed:
                artifacts.append(
                    self._write(context, "test-failed-1.png", ArtifactType.SCREENSHOT)
                )

            return AttemptOutcome(
                passed=passed,
                duration_ms=5.0,
                artifacts=artifacts,
                error_message=None if passed else "expect(locator).toBeVisible() failed",
                exit_code=0 if passed else 1,
            )
        finally:
            self.active -= 1

    @staticmethod
    def _write(context, name, artifact_type):
        path = Path(context.artifacts_dir) / name
        path.write_bytes(b"artifact")
        return ArtifactRef(artifact_type=artifact_type, path=path, attempt=context.attempt)


class CountingProvisioner:
    """Stand-in for AuthStateProvisioner that records its invocations."""

    def __init__(self, storage_path, events=None, error=None):
        self.storage_path = Path(storage_path)
        self.events = events if events is not None else []
        self.error = error
        self.calls = 0

    async def provision(self, base_url):
        self.calls += 1
        self.events.append(("provision", base_url))
        if self.error is not None:
            raise self.error
        return AuthState(
            storage_path=self.storage_path,
            base_url=base_url,
            cookies=[{"name": "session", "value": "abc", "domain": "localhost", "path": "/"}],
        )


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove environment signals that would change run policy."""
    for name in (
        "CI",
        "BASE_URL",
        "RUNWRIGHT_WORKERS",
        "RUNWRIGHT_RETRIES",
        "RUNWRIGHT_AUTH_EMAIL",
        "RUNWRIGHT_AUTH_PASSWORD",
        "RUNWRIGHT_CONFIG",
        "RUNWRIGHT_LOG_LEVEL",
        "RUNWRIGHT_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def e2e_dir(tmp_path):
    """Create a test directory with a few spec files."""
    test_dir = tmp_path / "tests" / "e2e"
    test_dir.mkdir(parents=True)

    (test_dir / "auth.spec.js").write_text(
        """
const { test, expect } = require('@playwright/test');

test('dashboard is visible after login', async ({ page }) => {
  await page.goto('/dashboard');
  await expect(page.locator('h1')).toBeVisible();
});
"""
    )
    (test_dir / "clients.spec.js").write_text(
        """
const { test, expect } = require('@playwright/test');

test.describe('clients', () => {
  test('list clients', async ({ page }) => {
    await page.goto('/clients');
  });
});
"""
    )
    (test_dir / "billing.spec.js").write_text(
        """
const { test } = require('@playwright/test');

test('invoices load', async ({ page }) => {
  await page.goto('/billing');
});
"""
    )
    (test_dir / "test-utils.js").write_text("module.exports = {};\n")
    return test_dir


@pytest.fixture
def make_plan(tmp_path, e2e_dir):
    """Factory for RunConfig instances rooted in tmp_path."""

    def _make_plan(**overrides):
        values = {
            "test_directory": e2e_dir,
            "parallel": False,
            "worker_count": 1,
            "retry_count": 0,
            "timeout_ms": 5000,
            "target_environments": (
                EnvironmentDescriptor(name="chromium", capabilities={"browser": "chromium"}),
            ),
            "base_url": "http://localhost:3000",
            "artifacts_dir": tmp_path / "test-results",
            "report_dir": tmp_path / "playwright-report",
        }
        values.update(overrides)
        return RunConfig(**values)

    return _make_plan


@pytest.fixture
def auth_state(tmp_path):
    """A provisioned session snapshot."""
    return AuthState(
        storage_path=tmp_path / ".auth" / "user.json",
        base_url="http://localhost:3000",
        cookies=[{"name": "session", "value": "abc", "domain": "localhost", "path": "/"}],
    )


@pytest.fixture
def scripted_engine():
    """Return the ScriptedEngine class for per-test construction."""
    return ScriptedEngine


@pytest.fixture
def counting_provisioner():
    """Return the CountingProvisioner class for per-test construction."""
    return CountingProvisioner


@pytest.fixture
def serve_app():
    """Serve an aiohttp application on an ephemeral localhost port."""

    @asynccontextmanager
    async def _serve(app):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.SockSite(runner, sock)
        await site.start()
        try:
            yield f"http://127.0.0.1:{port}"
        finally:
            await runner.cleanup()

    return _serve


@pytest.fixture
def unused_url():
    """A localhost URL nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}"


def _process_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return True
    # An unreaped zombie has already exited
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


@pytest.fixture
def wait_for_exit():
    """Wait until a process id is gone; returns False if it outlives timeout."""

    async def _wait(pid, timeout=5.0):
        deadline = time.monotonic() + timeout
        while _process_alive(pid):
            if time.monotonic() > deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    return _wait


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as using real processes or sockets"
    )
