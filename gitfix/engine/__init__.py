"""Durable workflow orchestration engine."""

from .context import WorkflowContext
from .durations import parse_duration
from .event_log import EventLog
from .runner import WorkflowEngine, WorkflowFn
from .scheduler import Scheduler
from .steps import StepExecutor

__all__ = [
    "EventLog",
    "Scheduler",
    "StepExecutor",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowFn",
    "parse_duration",
]
