"""retrace package root exposing the recorder, replay client and orchestration server."""

from retrace.src.recorder.session import RecordingSession
from retrace.src.replay.coordinator import ExecutionCoordinator
from retrace.src.replay.engine import ActionExecutionEngine
from retrace.src.replay.models import ActionPayload, ActionType
from retrace.src.server.app import create_app
from retrace.src.utils.models import ReferenceTrace

__all__ = [
    "RecordingSession",
    "ExecutionCoordinator",
    "ActionExecutionEngine",
    "ActionPayload",
    "ActionType",
    "create_app",
    "ReferenceTrace",
]
