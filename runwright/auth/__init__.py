"""Shared session provisioning for Runwright."""

from .models import AuthState
from .provisioner import AuthStateProvisioner, FormLoginFlow, LoginFlow

__all__ = [
    "AuthState",
    "AuthStateProvisioner",
    "FormLoginFlow",
    "LoginFlow",
]
