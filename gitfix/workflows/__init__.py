from .activities import (
    ToolOutcome,
    accumulate_lines,
    accumulate_words,
    emit_activity,
    emit_tool_activity,
    stream_file_change,
    stream_reasoning,
    stream_summary,
)
from .triage_and_fix import SUMMARY_STREAM_ID, TriageAndFixWorkflow

__all__ = [
    "SUMMARY_STREAM_ID",
    "ToolOutcome",
    "TriageAndFixWorkflow",
    "accumulate_lines",
    "accumulate_words",
    "emit_activity",
    "emit_tool_activity",
    "stream_file_change",
    "stream_reasoning",
    "stream_summary",
]
