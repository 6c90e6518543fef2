"""Core components for Runwright."""

from .config import Config
from .config_loader import load_run_config_file
from .exceptions import (
    RunwrightError,
    ConfigError,
    ServerStartError,
    ServerStartTimeout,
    ServerShutdownError,
    AuthProvisioningError,
    TestExecutionError,
)
from .logging_config import setup_logging, get_logger
from .workflow import RunContext, generate_run_id

__all__ = [
    "Config",
    "load_run_config_file",
    "RunwrightError",
    "ConfigError",
    "ServerStartError",
    "ServerStartTimeout",
    "ServerShutdownError",
    "AuthProvisioningError",
    "TestExecutionError",
    "setup_logging",
    "get_logger",
    "RunContext",
    "generate_run_id",
]
