"""Callback/hook system for run lifecycle events."""

from autoflow.callbacks.base import RunCallback
from autoflow.callbacks.logging import LoggingCallback

__all__ = ["RunCallback", "LoggingCallback"]
