"""
Main CLI interface for Runwright.

Provides commands to execute a run, inspect the resolved run plan and probe
a server's readiness URL.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .app import execute_run
from .core.config import Config
from .core.config_loader import load_run_config_file
from .core.exceptions import RunwrightError
from .planning.planner import RunPlanner
from .reporting.emitter import ReportEmitter
from .server.lifecycle import http_health_probe


def _build_config(args: argparse.Namespace) -> Config:
    config = Config.from_env()
    if getattr(args, "config", None):
        config.config_path = Path(args.config)
    return config


def _build_env(args: argparse.Namespace) -> Dict[str, str]:
    """Translate CLI flags into planner environment signals."""
    env = dict(os.environ)
    if getattr(args, "ci", False):
        env["CI"] = "true"
    if getattr(args, "workers", None) is not None:
        env["RUNWRIGHT_WORKERS"] = str(args.workers)
    if getattr(args, "retries", None) is not None:
        env["RUNWRIGHT_RETRIES"] = str(args.retries)
    if getattr(args, "base_url", None):
        env["BASE_URL"] = args.base_url
    return env


def _build_overrides(args: argparse.Namespace) -> Dict[str, object]:
    overrides: Dict[str, object] = {}
    if getattr(args, "parallel", False):
        overrides["fully_parallel"] = True
    if getattr(args, "global_timeout", None) is not None:
        overrides["global_timeout_ms"] = args.global_timeout
    return overrides


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a test run."""
    env = _build_env(args)
    config = _build_config(args)
    if env.get("CI") == "true":
        config.ci_mode = True

    outcome = execute_run(config, overrides=_build_overrides(args), env=env)

    if outcome.error is not None:
        print(f"❌ {outcome.error.message}", file=sys.stderr)
        output = outcome.error.context.get("output")
        if output:
            print(output, file=sys.stderr)
        return outcome.exit_code

    icon = "✅" if outcome.succeeded else "❌"
    print(f"{icon} {ReportEmitter.format_console_summary(outcome.summary)}")
    if outcome.report_path:
        print(f"📊 Report: {outcome.report_path}")
    return outcome.exit_code


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the resolved run configuration."""
    config = _build_config(args)
    try:
        raw = load_run_config_file(config.config_path)
        raw.update(_build_overrides(args))
        plan = RunPlanner(env=_build_env(args), base_dir=config.project_root).resolve(raw)
    except RunwrightError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    data = plan.model_dump(mode="json", exclude={"auth": {"credentials": {"password"}}})
    print(json.dumps(data, indent=2))
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    """Check whether a server answers on a readiness URL."""
    ready = asyncio.run(http_health_probe(args.url, timeout=args.timeout))
    if ready:
        print(f"✅ {args.url} is ready")
        return 0
    print(f"❌ {args.url} is not ready")
    return 1


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"Runwright {__version__}")
    if args.verbose:
        print(f"  Python: {sys.version}")
        print(f"  Platform: {sys.platform}")
        print(f"  Working Directory: {os.getcwd()}")
    return 0


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="Path to the run configuration file")
    parser.add_argument("--ci", action="store_true", help="Apply CI overrides")
    parser.add_argument("--workers", type=int, help="Worker count override")
    parser.add_argument("--retries", type=int, help="Retry count override")
    parser.add_argument("--base-url", help="Base URL of the system under test")
    parser.add_argument(
        "--parallel", action="store_true", help="Allow more than one worker"
    )
    parser.add_argument(
        "--global-timeout", type=int, help="Deadline for the execution phase in ms"
    )


def create_main_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    parser = argparse.ArgumentParser(
        prog="runwright",
        description="Runwright - end-to-end test run orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runwright run --config runwright.config.yaml
  runwright run --ci
  runwright plan --workers 4 --parallel
  runwright probe http://localhost:3000
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Execute a test run")
    _add_run_options(run_parser)
    run_parser.set_defaults(func=cmd_run)

    plan_parser = subparsers.add_parser("plan", help="Show the resolved run plan")
    _add_run_options(plan_parser)
    plan_parser.set_defaults(func=cmd_plan)

    probe_parser = subparsers.add_parser("probe", help="Probe a readiness URL")
    probe_parser.add_argument("url", help="URL to probe")
    probe_parser.add_argument(
        "--timeout", type=float, default=5.0, help="Probe timeout in seconds"
    )
    probe_parser.set_defaults(func=cmd_probe)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show detailed information"
    )
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    if not hasattr(parsed_args, "func"):
        parser.print_help()
        return 1

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
