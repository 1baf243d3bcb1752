"""Orchestration server."""
from retrace.src.server.app import create_app
from retrace.src.server.decision import LLMDecisionEngine, MockDecisionEngine
from retrace.src.server.session import OrchestrationSession, SessionState
from retrace.src.server.storage import WorkflowStore

__all__ = [
    "create_app",
    "LLMDecisionEngine",
    "MockDecisionEngine",
    "OrchestrationSession",
    "SessionState",
    "WorkflowStore",
]
