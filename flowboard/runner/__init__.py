"""Durable step runner contract and the in-process implementation."""

from .base import (
    Entrypoint,
    InstanceHandle,
    RetryPolicy,
    StepContext,
    StepOptions,
    StepRunner,
)
from .local import LocalInstance, LocalStepContext, LocalStepRunner

__all__ = [
    "Entrypoint",
    "InstanceHandle",
    "LocalInstance",
    "LocalStepContext",
    "LocalStepRunner",
    "RetryPolicy",
    "StepContext",
    "StepOptions",
    "StepRunner",
]
