"""
Run identity for Runwright.

Generates run ids used to correlate logs, artifacts and reports.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Any
from dataclasses import dataclass, field


def generate_run_id() -> str:
    """
    Generate a unique run ID.

    Returns:
        Identifier of the form ``YYYYMMDD-HHMMSS-<12 hex chars>``, so that
        run directories sort chronologically.
    """
    suffix = uuid.uuid4().hex[:12]
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{timestamp}-{suffix}"


@dataclass
class RunContext:
    """Context information for a single test run."""

    run_id: str = field(default_factory=generate_run_id)
    start_time: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Get current run duration in seconds."""
        return time.time() - self.start_time

    @property
    def start_timestamp(self) -> str:
        """Get formatted start timestamp."""
        return datetime.fromtimestamp(self.start_time).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_time": self.start_timestamp,
            "duration": self.duration,
            "metadata": self.metadata,
        }
