"""
Data models for the system under test process.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Any, Optional

OUTPUT_BUFFER_LINES = 200


class ServerState(Enum):
    """Lifecycle state of the system under test."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class ServerHandle:
    """
    A reachable system under test.

    ``reused`` handles were found already running; the orchestrator does not
    own their shutdown. Otherwise the handle owns ``process``.
    """

    url: str
    reused: bool
    command: Optional[str] = None
    state: ServerState = ServerState.NOT_STARTED
    process: Optional[asyncio.subprocess.Process] = field(default=None, repr=False)
    output: Deque[str] = field(
        default_factory=lambda: deque(maxlen=OUTPUT_BUFFER_LINES), repr=False
    )
    reader_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def captured_output(self) -> str:
        """Return the buffered process output."""
        return "\n".join(self.output)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "reused": self.reused,
            "command": self.command,
            "state": self.state.value,
            "pid": self.pid,
        }
