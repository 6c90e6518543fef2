"""
Run planner: resolves a raw run configuration into a RunConfig.

The override rules are enumerated here and nowhere else; no other component
reads the environment to change run policy.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ..core.config import env_flag
from ..core.exceptions import ConfigError
from ..core.logging_config import get_logger
from .models import (
    AuthSpec,
    DEFAULT_TEST_MATCH,
    EnvironmentDescriptor,
    RunConfig,
)

CI_RETRY_COUNT = 2

DEFAULT_TEST_DIR = "tests/e2e"
DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_RETRIES = 1
DEFAULT_WORKERS = 1
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_PROJECTS = [
    {"name": "chromium", "use": {"browser": "chromium", "device": "Desktop Chrome"}}
]


class RunPlanner:
    """
    Resolves declared run settings plus environment signals into a RunConfig.

    Precedence is: explicit environment signal > declared value > default.
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        base_dir: Optional[Path] = None,
    ):
        """
        Initialize the planner.

        Args:
            env: Environment mapping to read signals from (defaults to os.environ)
            base_dir: Directory relative paths are resolved against
        """
        self.env = dict(os.environ if env is None else env)
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.logger = get_logger(__name__)

    @property
    def ci(self) -> bool:
        return env_flag(self.env.get("CI"))

    def resolve(self, raw: Mapping[str, Any]) -> RunConfig:
        """
        Resolve a raw configuration mapping.

        Args:
            raw: Declared configuration (from a YAML/JSON file or a dict)

        Returns:
            Immutable run configuration

        Raises:
            ConfigError: If the test directory is missing, the worker count is
                below 1, no target environment is declared, or any value is
                invalid
        """
        raw = dict(raw or {})
        ci = self.ci

        test_directory = self._resolve_path(raw.get("test_dir", DEFAULT_TEST_DIR))
        if not test_directory.is_dir():
            raise ConfigError(
                f"Test directory does not exist: {test_directory}", field="test_dir"
            )

        parallel = self._bool_setting(raw, "fully_parallel", False)
        workers = self._int_setting(raw, "workers", DEFAULT_WORKERS)
        retries = self._int_setting(raw, "retries", DEFAULT_RETRIES)
        forbid_only = self._bool_setting(raw, "forbid_only", False)

        if ci:
            retries = CI_RETRY_COUNT
            forbid_only = True
            workers = 1
        else:
            workers = self._int_env("RUNWRIGHT_WORKERS", workers)
            retries = self._int_env("RUNWRIGHT_RETRIES", retries)

        if workers < 1:
            raise ConfigError(
                f"Worker count must be at least 1, got {workers}", field="workers"
            )

        if not parallel:
            workers = 1

        environments = self._resolve_environments(raw.get("projects", DEFAULT_PROJECTS))
        base_url = self.env.get("BASE_URL") or raw.get("base_url", DEFAULT_BASE_URL)

        values = {
            "test_directory": test_directory,
            "parallel": parallel,
            "worker_count": workers,
            "retry_count": retries,
            "timeout_ms": raw.get("timeout_ms", DEFAULT_TIMEOUT_MS),
            "target_environments": environments,
            "base_url": base_url,
            "ci": ci,
            "forbid_only": forbid_only,
            "global_timeout_ms": raw.get("global_timeout_ms"),
            "web_server": self._resolve_web_server(raw.get("web_server"), ci),
            "auth": self._resolve_auth(raw.get("auth")),
            "artifacts_dir": self._resolve_path(raw.get("artifacts_dir", "test-results")),
            "report_dir": self._resolve_path(raw.get("report_dir", "playwright-report")),
            "test_match": self._resolve_test_match(raw.get("test_match", DEFAULT_TEST_MATCH)),
        }

        try:
            plan = RunConfig(**values)
        except ValidationError as e:
            violations = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigError(
                "Run configuration is invalid: " + "; ".join(violations),
                violations=violations,
            ) from e

        self.logger.info(
            "Run configuration resolved", extra={"metadata": plan.to_summary()}
        )
        return plan

    def _resolve_path(self, value: Any) -> Path:
        path = Path(value)
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def _int_setting(self, raw: Mapping[str, Any], key: str, default: int) -> int:
        value = raw.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer, got {value!r}", field=key)
        return value

    def _bool_setting(self, raw: Mapping[str, Any], key: str, default: bool) -> bool:
        value = raw.get(key, default)
        if not isinstance(value, bool):
            raise ConfigError(f"{key} must be true or false, got {value!r}", field=key)
        return value

    def _int_env(self, name: str, current: int) -> int:
        value = self.env.get(name)
        if value is None or value == "":
            return current
        try:
            return int(value)
        except ValueError:
            raise ConfigError(
                f"Environment variable {name} must be an integer, got {value!r}",
                field=name,
            )

    def _resolve_environments(self, projects: Any) -> List[EnvironmentDescriptor]:
        if not projects:
            raise ConfigError(
                "At least one target environment (project) is required",
                field="projects",
            )
        if not isinstance(projects, list):
            raise ConfigError("projects must be a list", field="projects")

        environments = []
        for project in projects:
            if not isinstance(project, Mapping):
                raise ConfigError(
                    f"Each project must be a mapping, got {project!r}", field="projects"
                )
            try:
                environments.append(
                    EnvironmentDescriptor(
                        name=project.get("name", ""),
                        capabilities=dict(project.get("use") or {}),
                    )
                )
            except ValidationError as e:
                raise ConfigError(
                    f"Invalid project {project!r}: {e}", field="projects"
                ) from e
        return environments

    def _resolve_test_match(self, value: Any) -> Tuple[str, ...]:
        if isinstance(value, str):
            return (value,)
        return tuple(value)

    def _resolve_web_server(self, raw: Any, ci: bool) -> Optional[Dict[str, Any]]:
        if not raw:
            return None
        if not isinstance(raw, Mapping):
            raise ConfigError("web_server must be a mapping", field="web_server")
        values = dict(raw)
        if ci:
            # CI always starts its own server
            values["reuse_existing_server"] = False
        return values

    def _resolve_auth(self, raw: Any) -> Dict[str, Any]:
        values = dict(raw or {})
        credentials = dict(values.pop("credentials", None) or {})
        if self.env.get("RUNWRIGHT_AUTH_EMAIL"):
            credentials["email"] = self.env["RUNWRIGHT_AUTH_EMAIL"]
        if self.env.get("RUNWRIGHT_AUTH_PASSWORD"):
            credentials["password"] = self.env["RUNWRIGHT_AUTH_PASSWORD"]
        if "storage_state_path" in values:
            values["storage_state_path"] = self._resolve_path(values["storage_state_path"])
        else:
            values["storage_state_path"] = self._resolve_path(
                AuthSpec.model_fields["storage_state_path"].default
            )
        values["credentials"] = credentials
        return values
