"""
Runwright - end-to-end test run orchestrator

Prepares and sequences browser test runs: resolves the run plan, manages the
system under test, provisions a shared authenticated session and executes
tests with retry, flakiness and artifact policy.
"""

__version__ = "0.1.0"

from .core.config import Config
from .core.exceptions import RunwrightError
from .core.logging_config import setup_logging
from .runner import RunOutcome, TestRunOrchestrator

__all__ = [
    "Config",
    "RunwrightError",
    "setup_logging",
    "RunOutcome",
    "TestRunOrchestrator",
]
