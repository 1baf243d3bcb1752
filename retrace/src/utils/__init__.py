"""Utility exports for retrace."""
from retrace.src.utils.config import CONFIG, AppConfig, LLMConfig, RecorderConfig, ReplayConfig, ServerConfig
from retrace.src.utils.models import CaptureEvent, LiveStateSnapshot, PreviewImage, ReferenceTrace, Workflow

__all__ = [
    "CONFIG",
    "AppConfig",
    "LLMConfig",
    "RecorderConfig",
    "ReplayConfig",
    "ServerConfig",
    "CaptureEvent",
    "LiveStateSnapshot",
    "PreviewImage",
    "ReferenceTrace",
    "Workflow",
]
