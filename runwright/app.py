"""
Runwright main application entry point.

Sets up configuration and logging for a run, executes it and converts the
outcome into a process exit code.
"""

import asyncio
import sys
import traceback
from typing import Any, Dict, Mapping, Optional

from .core.config import Config
from .core.config_loader import load_run_config_file
from .core.exceptions import RunwrightError
from .core.logging_config import get_logger, setup_logging
from .core.workflow import RunContext
from .planning.planner import RunPlanner
from .runner import RunOutcome, TestRunOrchestrator


def execute_run(
    config: Config,
    overrides: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> RunOutcome:
    """
    Load the run configuration and execute a run.

    Args:
        config: Ambient configuration (logging, config file location)
        overrides: Declared values that replace those from the file
        env: Environment mapping for the planner (defaults to os.environ)

    Returns:
        Outcome of the run
    """
    run_context = RunContext(metadata={"entry_point": "runwright"})
    setup_logging(config, run_context.run_id)
    logger = get_logger("runwright.main", run_id=run_context.run_id)

    logger.info(
        "Runwright starting up",
        extra={"metadata": {"run_id": run_context.run_id, "config": config.to_dict()}},
    )

    try:
        raw = load_run_config_file(config.config_path)
    except RunwrightError as e:
        logger.error(f"Run aborted: {e.message}", extra={"metadata": e.to_dict()})
        return RunOutcome(run_id=run_context.run_id, exit_code=1, error=e)

    raw.update(overrides or {})

    orchestrator = TestRunOrchestrator(
        planner=RunPlanner(env=env, base_dir=config.project_root),
        run_context=run_context,
    )
    return asyncio.run(orchestrator.run(raw))


def main() -> int:
    """
    Main entry point for Runwright.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    try:
        config = Config.from_env()
        outcome = execute_run(config)
        return outcome.exit_code
    except KeyboardInterrupt:
        print("Run interrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {str(e)}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
