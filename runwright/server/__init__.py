"""System under test lifecycle management for Runwright."""

from .lifecycle import ServerLifecycleManager, http_health_probe
from .models import ServerHandle, ServerState

__all__ = [
    "ServerLifecycleManager",
    "http_health_probe",
    "ServerHandle",
    "ServerState",
]
