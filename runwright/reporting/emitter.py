"""
Run report emission.

Writes one report tree per run: a JSON document with the summary and every
result, and a JUnit XML file for CI systems.
"""

import json
from pathlib import Path
from typing import Dict, List

from jinja2 import Environment

from ..core.exceptions import RunwrightError
from ..core.logging_config import get_logger
from ..execution.models import ExecutionResult, TestStatus
from .models import RunSummary

JUNIT_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<testsuites name="runwright" tests="{{ summary.total }}" failures="{{ summary.failed }}" skipped="{{ summary.skipped }}" time="{{ '%.3f'|format(summary.duration_ms / 1000) }}">
{%- for environment, results in suites.items() %}
  <testsuite name="{{ environment }}" tests="{{ results | length }}" failures="{{ results | selectattr('status.value', 'equalto', 'failed') | list | length }}" skipped="{{ results | selectattr('status.value', 'equalto', 'skipped') | list | length }}">
  {%- for result in results %}
    <testcase name="{{ result.unit_id }}" classname="{{ environment }}" time="{{ '%.3f'|format(result.duration_ms / 1000) }}">
    {%- if result.status.value == 'failed' %}
      <failure message="{{ result.error_message or 'failed' }}">attempts: {{ result.attempts }}</failure>
    {%- elif result.status.value == 'skipped' %}
      <skipped message="{{ result.error_message or 'skipped' }}"/>
    {%- elif result.status.value == 'flaky' %}
      <system-out>flaky: passed on attempt {{ result.attempts }}</system-out>
    {%- endif %}
    </testcase>
  {%- endfor %}
  </testsuite>
{%- endfor %}
</testsuites>
"""


class ReportEmitter:
    """Persists run results under ``<report_dir>/<run_id>/``."""

    def __init__(self, report_dir: Path):
        self.report_dir = Path(report_dir)
        self.logger = get_logger(__name__)
        self.jinja_env = Environment(autoescape=True)
        self.junit_template = self.jinja_env.from_string(JUNIT_TEMPLATE)

    def emit(self, summary: RunSummary, results: List[ExecutionResult]) -> Path:
        """
        Write the report tree for a run.

        Returns:
            Directory containing the report files
        """
        run_dir = self.report_dir / summary.run_id
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            (run_dir / "results.json").write_text(
                json.dumps(
                    {
                        "summary": summary.to_dict(),
                        "results": [result.to_summary() for result in results],
                    },
                    indent=2,
                    ensure_ascii=False,
                ),
                encoding="utf-8",
            )
            (run_dir / "junit.xml").write_text(
                self.render_junit(summary, results), encoding="utf-8"
            )
        except OSError as e:
            raise RunwrightError(
                f"Failed to write report to {run_dir}: {e}",
                error_code="REPORT_WRITE_FAILED",
                context={"report_dir": str(run_dir)},
            ) from e

        self.logger.info(
            f"Report written to {run_dir}",
            extra={"metadata": summary.to_dict()},
        )
        return run_dir

    def render_junit(self, summary: RunSummary, results: List[ExecutionResult]) -> str:
        suites: Dict[str, List[ExecutionResult]] = {}
        for result in results:
            suites.setdefault(result.environment, []).append(result)
        return self.junit_template.render(summary=summary, suites=suites)

    @staticmethod
    def format_console_summary(summary: RunSummary) -> str:
        """One-line summary for terminal output."""
        parts = [f"{summary.passed} passed"]
        for label, count in (
            (TestStatus.FLAKY.value, summary.flaky),
            (TestStatus.FAILED.value, summary.failed),
            (TestStatus.SKIPPED.value, summary.skipped),
        ):
            if count:
                parts.append(f"{count} {label}")
        line = ", ".join(parts) + f" ({summary.duration_ms / 1000:.1f}s)"
        if summary.interrupted:
            line += f" - interrupted: {summary.interrupt_reason}"
        return line
