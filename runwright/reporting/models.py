"""
Pydantic models for run reporting.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..execution.models import ExecutionResult, TestStatus


class RunSummary(BaseModel):
    """Aggregate outcome of a run and the process exit code it implies."""

    model_config = ConfigDict(extra="forbid")

    run_id: str = Field(..., description="Run identifier")
    total: int = Field(0, ge=0)
    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    flaky: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    duration_ms: float = Field(0.0, ge=0)
    interrupted: bool = Field(False, description="Run was cancelled or timed out")
    interrupt_reason: Optional[str] = None

    @property
    def exit_code(self) -> int:
        """Non-zero when any unit failed after retries or the run was cut short."""
        return 1 if self.failed or self.interrupted else 0

    @classmethod
    def from_results(
        cls,
        run_id: str,
        results: List[ExecutionResult],
        duration_ms: float = 0.0,
        interrupt_reason: Optional[str] = None,
    ) -> "RunSummary":
        counts = {status: 0 for status in TestStatus}
        for result in results:
            counts[result.status] += 1
        return cls(
            run_id=run_id,
            total=len(results),
            passed=counts[TestStatus.PASSED],
            failed=counts[TestStatus.FAILED],
            flaky=counts[TestStatus.FLAKY],
            skipped=counts[TestStatus.SKIPPED],
            duration_ms=duration_ms,
            interrupted=interrupt_reason is not None,
            interrupt_reason=interrupt_reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["exit_code"] = self.exit_code
        return data
