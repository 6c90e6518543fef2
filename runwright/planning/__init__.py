"""Run configuration resolution for Runwright."""

from .models import (
    AuthSpec,
    Credentials,
    EnvironmentDescriptor,
    RunConfig,
    WebServerSpec,
)
from .planner import RunPlanner, CI_RETRY_COUNT

__all__ = [
    "AuthSpec",
    "Credentials",
    "EnvironmentDescriptor",
    "RunConfig",
    "WebServerSpec",
    "RunPlanner",
    "CI_RETRY_COUNT",
]
