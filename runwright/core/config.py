"""
Ambient configuration for Runwright.

Handles environment variables and defaults for logging, directories and CI
detection. Run-specific settings (workers, retries, projects) live in the
run configuration file and are resolved by the planner.
"""

import os
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from pathlib import Path

TRUTHY_VALUES = ("1", "true", "yes", "on")

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARN", "WARNING", "ERROR"]
VALID_LOG_FORMATS = ["text", "json"]

CONFIG_FILE_CANDIDATES = (
    "runwright.config.yaml",
    "runwright.config.yml",
    "runwright.config.json",
)


def env_flag(value: Optional[str]) -> bool:
    """Interpret an environment variable value as a boolean signal."""
    return (value or "").strip().lower() in TRUTHY_VALUES


@dataclass
class Config:
    """Configuration class for Runwright with environment variable support."""

    # Environment detection
    ci_mode: bool = field(default=False)

    # Logging configuration
    log_level: str = field(default="INFO")
    log_format: str = field(default="text")

    # Directory paths
    project_root: Path = field(default_factory=lambda: Path.cwd())
    logs_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")

    # Run configuration file
    config_path: Optional[Path] = field(default=None)

    def __post_init__(self):
        """Apply environment overrides and normalize values."""
        if env_flag(os.getenv("CI")) and self.ci_mode is False:
            self.ci_mode = True

        log_env = os.getenv("RUNWRIGHT_LOG_LEVEL")
        if log_env:
            self.log_level = log_env
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            self.log_level = "INFO"
        else:
            self.log_level = self.log_level.upper()
        if self.log_level == "WARN":
            self.log_level = "WARNING"

        format_env = os.getenv("RUNWRIGHT_LOG_FORMAT")
        if format_env and format_env.lower() in VALID_LOG_FORMATS:
            self.log_format = format_env.lower()
        elif self.ci_mode and self.log_format == "text":
            # Machine-readable logs by default in CI
            self.log_format = "json"

        config_env = os.getenv("RUNWRIGHT_CONFIG")
        if config_env:
            self.config_path = Path(config_env)
        elif self.config_path is None:
            self.config_path = self._find_config_file()

    def _find_config_file(self) -> Optional[Path]:
        for name in CONFIG_FILE_CANDIDATES:
            candidate = self.project_root / name
            if candidate.exists():
                return candidate
        return None

    @property
    def is_ci_mode(self) -> bool:
        """Check if running in CI environment."""
        return self.ci_mode

    @property
    def debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self.log_level == "DEBUG"

    def get_log_file_path(self) -> Path:
        """Get the main log file path."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        return self.logs_dir / "runwright.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for logging."""
        return {
            "ci_mode": self.ci_mode,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "project_root": str(self.project_root),
            "logs_dir": str(self.logs_dir),
            "config_path": str(self.config_path) if self.config_path else None,
        }

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(ci_mode=env_flag(os.getenv("CI")))
