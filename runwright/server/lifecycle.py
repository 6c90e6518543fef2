"""
Lifecycle management for the system under test.

Starts the server process (or reuses one that is already healthy), polls its
readiness URL, and stops it at the end of the run without ever blocking the
run indefinitely.
"""

import asyncio
import os
import signal
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import aiohttp

from ..core.exceptions import ServerShutdownError, ServerStartError, ServerStartTimeout
from ..core.logging_config import get_logger, log_performance
from .models import ServerHandle, ServerState

HealthProbe = Callable[[str], Awaitable[bool]]

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_PROBE_TIMEOUT = 5.0


async def http_health_probe(url: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """
    Check whether a server answers on url.

    Redirects are not followed. Any status from 200 up to 403 counts as
    ready, so a login redirect or an auth wall still means the server is up.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url, allow_redirects=False) as response:
                return 200 <= response.status < 404
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
        return False


class ServerLifecycleManager:
    """
    Brings the system under test up and down.

    State machine: NOT_STARTED -> STARTING -> READY -> SHUTTING_DOWN -> STOPPED,
    or NOT_STARTED -> READY directly when a healthy server is reused.
    """

    def __init__(
        self,
        probe: Optional[HealthProbe] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        cwd: Optional[Union[str, Path]] = None,
        run_id: Optional[str] = None,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            probe: Async readiness check, defaults to an HTTP probe
            poll_interval: Seconds between readiness checks
            grace_period: Seconds to wait after SIGTERM before SIGKILL
            cwd: Working directory for the start command
            run_id: Run identifier for log correlation
        """
        self.probe = probe or http_health_probe
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.cwd = str(cwd) if cwd else None
        self.logger = get_logger(__name__, run_id=run_id) if run_id else get_logger(__name__)

    async def ensure_ready(
        self,
        url: str,
        start_command: str,
        timeout_ms: int,
        reuse_if_running: bool,
    ) -> ServerHandle:
        """
        Make sure the system under test is reachable.

        Args:
            url: Readiness URL
            start_command: Shell command that starts the server
            timeout_ms: Startup deadline in milliseconds
            reuse_if_running: Reuse a server that already answers on url

        Returns:
            Handle for the ready server

        Raises:
            ServerStartError: If the process exits before becoming ready
            ServerStartTimeout: If the server is not ready before the deadline
        """
        if reuse_if_running and await self.probe(url):
            self.logger.info(
                f"Reusing existing server at {url}",
                extra={"metadata": {"url": url, "reused": True}},
            )
            return ServerHandle(url=url, reused=True, state=ServerState.READY)

        handle = ServerHandle(url=url, reused=False, command=start_command)
        await self._launch(handle)

        try:
            return await self._wait_until_ready(handle, timeout_ms)
        except BaseException:
            # Cancelled or failed mid-start: never leave the process group behind
            if handle.state != ServerState.STOPPED:
                await self._stop_process(handle)
                handle.state = ServerState.STOPPED
            raise

    async def _wait_until_ready(self, handle: ServerHandle, timeout_ms: int) -> ServerHandle:
        url = handle.url
        start_command = handle.command
        started = time.monotonic()
        deadline = started + timeout_ms / 1000.0

        while True:
            if await self.probe(url):
                handle.state = ServerState.READY
                log_performance(
                    self.logger,
                    "server_start",
                    time.monotonic() - started,
                    url=url,
                    pid=handle.pid,
                )
                return handle

            if handle.process.returncode is not None:
                await self._drain_output(handle)
                handle.state = ServerState.STOPPED
                raise ServerStartError(
                    f"Server process exited with code {handle.process.returncode} "
                    f"before {url} became ready",
                    command=start_command,
                    url=url,
                    exit_code=handle.process.returncode,
                    output=handle.captured_output(),
                )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                await self._stop_process(handle)
                handle.state = ServerState.STOPPED
                raise ServerStartTimeout(
                    f"Timed out waiting {timeout_ms}ms for {url} to become ready",
                    command=start_command,
                    url=url,
                    timeout_ms=timeout_ms,
                    output=handle.captured_output(),
                )

            await asyncio.sleep(min(self.poll_interval, remaining))

    async def shutdown(self, handle: ServerHandle) -> None:
        """
        Stop the server if this run owns it.

        Raises:
            ServerShutdownError: If the process had to be force-killed after
                the grace period
        """
        if handle.reused:
            self.logger.debug(f"Leaving reused server at {handle.url} running")
            return
        if handle.state == ServerState.STOPPED or handle.process is None:
            return

        handle.state = ServerState.SHUTTING_DOWN
        self.logger.info(
            f"Stopping server at {handle.url}",
            extra={"metadata": handle.to_dict()},
        )
        graceful = await self._stop_process(handle)
        handle.state = ServerState.STOPPED

        if not graceful:
            raise ServerShutdownError(
                f"Server process {handle.pid} did not exit within "
                f"{self.grace_period}s and was killed",
                pid=handle.pid,
                grace_period=self.grace_period,
            )

    async def _launch(self, handle: ServerHandle) -> None:
        handle.state = ServerState.STARTING
        self.logger.info(
            f"Starting server: {handle.command}",
            extra={"metadata": {"command": handle.command, "url": handle.url}},
        )
        handle.process = await asyncio.create_subprocess_shell(
            handle.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.cwd,
            start_new_session=True,
        )
        handle.reader_task = asyncio.ensure_future(self._capture_output(handle))

    async def _capture_output(self, handle: ServerHandle) -> None:
        stream = handle.process.stdout
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            handle.output.append(text)
            self.logger.debug(f"[server] {text}")

    async def _drain_output(self, handle: ServerHandle) -> None:
        if handle.reader_task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(handle.reader_task), timeout=1.0)
        except asyncio.TimeoutError:
            handle.reader_task.cancel()

    async def _stop_process(self, handle: ServerHandle) -> bool:
        """Terminate the process group; return False if SIGKILL was needed."""
        process = handle.process
        graceful = True

        if process.returncode is None:
            self._signal(process, force=False)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.grace_period)
            except asyncio.TimeoutError:
                graceful = False
                self.logger.warning(
                    f"Server process {process.pid} ignored SIGTERM, killing",
                    extra={"metadata": {"pid": process.pid}},
                )
                self._signal(process, force=True)
                await process.wait()

        await self._drain_output(handle)
        return graceful

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, force: bool) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass
