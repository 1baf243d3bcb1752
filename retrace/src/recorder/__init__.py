"""Recording: rrweb capture, compaction and previews."""
from retrace.src.recorder.compactor import compact, snapshot_now
from retrace.src.recorder.session import RecordingSession, RecordingStatus

__all__ = ["compact", "snapshot_now", "RecordingSession", "RecordingStatus"]
