"""Shared data structures for recorded traces and live snapshots."""
from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class EventType(IntEnum):
    """rrweb event type codes."""

    DOM_CONTENT_LOADED = 0
    LOAD = 1
    FULL_SNAPSHOT = 2
    INCREMENTAL_SNAPSHOT = 3
    META = 4
    CUSTOM = 5
    PLUGIN = 6


class IncrementalSource(IntEnum):
    """rrweb incremental snapshot sources."""

    MUTATION = 0
    MOUSE_MOVE = 1
    MOUSE_INTERACTION = 2
    SCROLL = 3
    VIEWPORT_RESIZE = 4
    INPUT = 5
    TOUCH_MOVE = 6
    MEDIA_INTERACTION = 7
    STYLE_SHEET_RULE = 8
    CANVAS_MUTATION = 9
    FONT = 10
    LOG = 11
    DRAG = 12
    STYLE_DECLARATION = 13
    SELECTION = 14
    ADOPTED_STYLE_SHEET = 15


class NodeType(IntEnum):
    """rrweb serialized node types."""

    DOCUMENT = 0
    DOCUMENT_TYPE = 1
    ELEMENT = 2
    TEXT = 3
    CDATA = 4
    COMMENT = 5


class CaptureKind(str, Enum):
    FULL_STATE = "FullState"
    META = "Meta"
    INTERACTION = "Interaction"


@dataclass(frozen=True, slots=True)
class CaptureEvent:
    """One kept event of a recording, in rrweb record shape."""

    type: int
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> CaptureKind:
        if self.type == EventType.FULL_SNAPSHOT:
            return CaptureKind.FULL_STATE
        if self.type == EventType.META:
            return CaptureKind.META
        return CaptureKind.INTERACTION

    @property
    def source(self) -> Optional[int]:
        value = self.data.get("source")
        return value if isinstance(value, int) else None

    def to_record(self) -> Dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "data": self.data}

    @classmethod
    def from_record(cls, raw: Dict[str, Any]) -> "CaptureEvent":
        return cls(
            type=int(raw.get("type", -1)),
            timestamp=int(raw.get("timestamp") or 0),
            data=dict(raw.get("data") or {}),
        )


@dataclass(frozen=True, slots=True)
class PreviewImage:
    """Low-fidelity JPEG taken during recording."""

    timestamp: int
    data: bytes

    @property
    def filename(self) -> str:
        return f"screenshot-{self.timestamp}.jpg"


@dataclass(frozen=True, slots=True)
class ReferenceTrace:
    """The compacted recording a replay is guided by."""

    events: Tuple[CaptureEvent, ...] = ()
    previews: Tuple[PreviewImage, ...] = ()

    def __len__(self) -> int:
        return len(self.events)

    def records(self) -> List[Dict[str, Any]]:
        return [event.to_record() for event in self.events]

    def to_jsonl(self) -> str:
        # ASCII-escaped: page text may carry lone surrogates that UTF-8 cannot encode.
        return "\n".join(
            json.dumps(record, separators=(",", ":"))
            for record in self.records()
        )

    @classmethod
    def from_jsonl(cls, text: str, previews: Iterable[PreviewImage] = ()) -> "ReferenceTrace":
        events: List[CaptureEvent] = []
        for line_no, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid trace record on line {line_no}") from exc
            if not isinstance(raw, dict):
                raise ValueError(f"Trace record on line {line_no} is not an object")
            events.append(CaptureEvent.from_record(raw))
        return cls(events=tuple(events), previews=tuple(previews))


@dataclass(frozen=True, slots=True)
class LiveStateSnapshot:
    """Compact capture of the page as it is right now. One per turn, never persisted."""

    structural_trace: str
    preview_image: bytes = b""

    def to_wire(self) -> Dict[str, str]:
        return {
            "structuralTrace": self.structural_trace,
            "previewImage": base64.b64encode(self.preview_image).decode("ascii"),
        }


@dataclass(frozen=True, slots=True)
class Workflow:
    """A persisted recording: identity plus the files stored under it."""

    id: str
    name: str
    files: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "files": list(self.files)}
