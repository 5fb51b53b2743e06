from .base import (
    EditFileAction,
    FixAction,
    FixAgent,
    FixPlan,
    FixReport,
    ReadFileAction,
    ReasonAction,
    RunCommandAction,
    Triager,
    WebSearchAction,
)
from .simulated import SimulatedFixAgent, classify, make_diff, mentioned_files
from .triage import AgentTriager, create_triage_agent

__all__ = [
    "AgentTriager",
    "EditFileAction",
    "FixAction",
    "FixAgent",
    "FixPlan",
    "FixReport",
    "ReadFileAction",
    "ReasonAction",
    "RunCommandAction",
    "SimulatedFixAgent",
    "Triager",
    "WebSearchAction",
    "classify",
    "create_triage_agent",
    "make_diff",
    "mentioned_files",
]
