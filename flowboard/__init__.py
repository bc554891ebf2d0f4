"""Flowboard: a live dashboard for durable multi-step workflows."""

__version__ = "0.1.0"

from .config import FlowboardConfig, load_config
from .models import InstanceStatus, StepRecord, StepStatus, StepUpdate, WorkflowInstance
from .persistence import get_repository
from .transports import get_transport

__all__ = [
    "FlowboardConfig",
    "InstanceStatus",
    "StepRecord",
    "StepStatus",
    "StepUpdate",
    "WorkflowInstance",
    "__version__",
    "get_repository",
    "get_transport",
    "load_config",
]
