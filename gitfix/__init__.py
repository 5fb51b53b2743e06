"""gitfix: durable workflows that triage and fix GitHub issues."""

from .agents import AgentTriager, FixAgent, SimulatedFixAgent
from .contracts import ActivityDetails, StreamMessage, TriageResult
from .engine import WorkflowContext, WorkflowEngine
from .errors import (
    GitfixError,
    InvalidRequest,
    InvalidStatus,
    NoDraftAvailable,
    NotFound,
    StepError,
    StepIdConflict,
    StorageUnavailable,
    Unauthorized,
)
from .github import SimulatedGitHubClient
from .persistence import get_repository
from .security import Principal, SubscriptionTokenService
from .service import IssueService, create_service
from .timeline import Timeline
from .transports import get_transport
from .workflows import TriageAndFixWorkflow

__version__ = "0.1.0"
__all__ = [
    "ActivityDetails",
    "AgentTriager",
    "FixAgent",
    "GitfixError",
    "InvalidRequest",
    "InvalidStatus",
    "IssueService",
    "NoDraftAvailable",
    "NotFound",
    "Principal",
    "SimulatedFixAgent",
    "SimulatedGitHubClient",
    "StepError",
    "StepIdConflict",
    "StorageUnavailable",
    "StreamMessage",
    "SubscriptionTokenService",
    "Timeline",
    "TriageAndFixWorkflow",
    "TriageResult",
    "Unauthorized",
    "WorkflowContext",
    "WorkflowEngine",
    "create_service",
    "get_repository",
    "get_transport",
]
