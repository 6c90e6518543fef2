"""
Data models for test execution and artifact management.

Defines Pydantic models for discovered test units, per-attempt execution
contexts and outcomes, artifact references and final results.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..auth.models import AuthState
from ..planning.models import EnvironmentDescriptor


class TestStatus(Enum):
    """Final status of a test unit in one environment."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    FLAKY = "flaky"
    SKIPPED = "skipped"


class ArtifactType(Enum):
    """Types of test artifacts."""

    TRACE = "trace"
    SCREENSHOT = "screenshot"
    VIDEO = "video"


class ArtifactRef(BaseModel):
    """Reference to an artifact file produced by one attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    artifact_type: ArtifactType = Field(..., description="Type of artifact")
    path: Path = Field(..., description="Artifact file location")
    attempt: int = Field(..., ge=1, description="Attempt that produced it")


class TestUnit(BaseModel):
    """A discovered test file."""

    __test__ = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    unit_id: str = Field(..., description="Path relative to the test directory")
    file: Path = Field(..., description="Absolute path of the test file")
    focused: bool = Field(False, description="Contains only-marked tests")

    @property
    def title(self) -> str:
        return self.unit_id


class ArtifactCapture(BaseModel):
    """Which artifacts the engine should record for an attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    trace: bool = False
    screenshot: bool = False
    video: bool = False


class ExecutionContext(BaseModel):
    """
    Isolated context for a single attempt.

    Built fresh per attempt and seeded with the run's read-only AuthState.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    run_id: str
    unit: TestUnit
    environment: EnvironmentDescriptor
    base_url: str
    auth_state: AuthState
    attempt: int = Field(..., ge=1)
    max_attempts: int = Field(..., ge=1)
    worker_index: int = Field(..., ge=0)
    timeout_ms: int = Field(..., gt=0)
    artifacts_dir: Path
    capture: ArtifactCapture = Field(default_factory=ArtifactCapture)

    @property
    def is_retry(self) -> bool:
        return self.attempt > 1

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt == self.max_attempts

    @property
    def storage_state_path(self) -> Optional[Path]:
        return self.auth_state.storage_path


class AttemptOutcome(BaseModel):
    """What the execution engine reports for one attempt."""

    model_config = ConfigDict(extra="forbid")

    passed: bool
    duration_ms: float = Field(0.0, ge=0)
    artifacts: List[ArtifactRef] = Field(default_factory=list)
    error_message: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""


class ExecutionResult(BaseModel):
    """Final outcome of one test unit in one environment."""

    model_config = ConfigDict(extra="forbid")

    unit_id: str = Field(..., description="Test unit identifier")
    file: str = Field(..., description="Test file path")
    environment: str = Field(..., description="Environment name")
    status: TestStatus = Field(..., description="Final status")
    attempts: int = Field(..., ge=0, description="Attempts actually made")
    artifacts: List[ArtifactRef] = Field(default_factory=list)
    duration_ms: float = Field(0.0, ge=0, description="Total time across attempts")
    error_message: Optional[str] = Field(None, description="Last failure message")
    worker_index: Optional[int] = Field(None, description="Worker that ran the unit")

    @property
    def title(self) -> str:
        return self.unit_id

    @property
    def is_failure(self) -> bool:
        return self.status == TestStatus.FAILED

    def get_artifacts_by_type(self, artifact_type: ArtifactType) -> List[ArtifactRef]:
        return [a for a in self.artifacts if a.artifact_type == artifact_type]

    def to_summary(self) -> Dict[str, Any]:
        """Create a summary dictionary for logging and reports."""
        return {
            "unit_id": self.unit_id,
            "file": self.file,
            "environment": self.environment,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 1),
            "error_message": self.error_message,
            "artifacts": [
                {"type": a.artifact_type.value, "path": str(a.path), "attempt": a.attempt}
                for a in self.artifacts
            ],
        }
