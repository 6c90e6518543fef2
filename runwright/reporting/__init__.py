"""Run reporting for Runwright."""

from .emitter import ReportEmitter
from .models import RunSummary

__all__ = ["ReportEmitter", "RunSummary"]
