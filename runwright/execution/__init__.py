"""
Test execution components for Runwright.

This module provides test discovery, the worker-pool executor, artifact
policy and the engine boundary to the external browser test runner.
"""

from .artifacts import ArtifactManager, ArtifactPolicy
from .discovery import discover_units
from .engine import ExecutionEngine, PlaywrightCommandEngine
from .executor import TestExecutor
from .models import (
    ArtifactCapture,
    ArtifactRef,
    ArtifactType,
    AttemptOutcome,
    ExecutionContext,
    ExecutionResult,
    TestStatus,
    TestUnit,
)

__all__ = [
    "ArtifactManager",
    "ArtifactPolicy",
    "discover_units",
    "ExecutionEngine",
    "PlaywrightCommandEngine",
    "TestExecutor",
    "ArtifactCapture",
    "ArtifactRef",
    "ArtifactType",
    "AttemptOutcome",
    "ExecutionContext",
    "ExecutionResult",
    "TestStatus",
    "TestUnit",
]
