"""Replay client helpers."""
from retrace.src.replay.coordinator import ExecutionCoordinator
from retrace.src.replay.engine import ActionExecutionEngine
from retrace.src.replay.environment import LiveEnvironment, PlaywrightEnvironment
from retrace.src.replay.uploader import WorkflowUploader

__all__ = [
    "ExecutionCoordinator",
    "ActionExecutionEngine",
    "LiveEnvironment",
    "PlaywrightEnvironment",
    "WorkflowUploader",
]
