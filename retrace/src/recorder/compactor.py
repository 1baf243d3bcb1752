"""Turn raw rrweb capture streams into lean reference traces.

Only full structural snapshots, meta events and discrete interactions
(clicks, input, scroll) survive. Structural trees keep just what is needed
to re-identify an element: node kind, id, tag, a whitelist of attributes and
a short text excerpt.
"""
from __future__ import annotations

import json
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional

from retrace.src.utils.models import (
    CaptureEvent,
    EventType,
    IncrementalSource,
    LiveStateSnapshot,
    NodeType,
    PreviewImage,
    ReferenceTrace,
)

KEPT_ATTRIBUTES = (
    "id",
    "class",
    "name",
    "type",
    "href",
    "placeholder",
    "aria-label",
    "data-testid",
    "role",
    "value",
)
TEXT_LIMIT = 200

KEPT_SOURCES = frozenset(
    {
        IncrementalSource.MOUSE_INTERACTION,
        IncrementalSource.INPUT,
        IncrementalSource.SCROLL,
    }
)
DROPPED_TAGS = frozenset({"script", "style", "noscript", "template"})
DROPPED_NODE_TYPES = frozenset({NodeType.COMMENT, NodeType.CDATA})


def should_keep(event: Mapping[str, Any]) -> bool:
    """Filtering policy applied to every emitted event."""
    event_type = event.get("type")
    if event_type in (EventType.FULL_SNAPSHOT, EventType.META):
        return True
    if event_type == EventType.INCREMENTAL_SNAPSHOT:
        data = event.get("data")
        if isinstance(data, Mapping):
            source = data.get("source")
            if isinstance(source, int) and not isinstance(source, bool):
                return source in KEPT_SOURCES
    return False


def truncate_text(text: str, limit: int = TEXT_LIMIT) -> str:
    """Cut ``text`` to ``limit`` UTF-16 code units (browser string length)."""
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    if len(encoded) <= limit * 2:
        return text
    # A surrogate pair split at the boundary is dropped rather than kept half.
    return encoded[: limit * 2].decode("utf-16-le", errors="ignore")


def _is_favicon(node: Mapping[str, Any]) -> bool:
    if str(node.get("tagName") or "").lower() != "link":
        return False
    attributes = node.get("attributes") or {}
    rel = str(attributes.get("rel") or "").lower()
    return "icon" in rel.split()


def _is_dropped(node: Mapping[str, Any]) -> bool:
    node_type = node.get("type")
    if node_type in DROPPED_NODE_TYPES:
        return True
    if node_type == NodeType.ELEMENT:
        tag = str(node.get("tagName") or "").lower()
        return tag in DROPPED_TAGS or _is_favicon(node)
    return False


def strip_node(node: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Strip one serialized node (and its subtree) down to the kept fields."""
    if not node:
        return None

    stripped: Dict[str, Any] = {"type": node.get("type")}
    if node.get("id") is not None:
        stripped["id"] = node.get("id")
    if node.get("tagName") is not None:
        stripped["tagName"] = node.get("tagName")

    attributes = node.get("attributes")
    if isinstance(attributes, Mapping):
        stripped["attributes"] = {
            name: attributes[name] for name in KEPT_ATTRIBUTES if attributes.get(name)
        }

    text = node.get("textContent")
    if isinstance(text, str) and text:
        stripped["textContent"] = truncate_text(text)

    children = node.get("childNodes")
    if isinstance(children, list):
        kept: List[Dict[str, Any]] = []
        for child in children:
            if not isinstance(child, Mapping) or _is_dropped(child):
                continue
            child_stripped = strip_node(child)
            if child_stripped is not None:
                kept.append(child_stripped)
        stripped["childNodes"] = kept

    return stripped


def simplify_snapshot(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    data = data or {}
    return {"node": strip_node(data.get("node"))}


def simplify_event(event: Mapping[str, Any]) -> Dict[str, Any]:
    """Reduce a kept event to its trace record."""
    if event.get("type") == EventType.FULL_SNAPSHOT:
        return {
            "type": int(EventType.FULL_SNAPSHOT),
            "timestamp": event.get("timestamp"),
            "data": simplify_snapshot(event.get("data")),
        }
    return dict(event)


def compact(
    raw_events: Iterable[Mapping[str, Any]],
    previews: Iterable[PreviewImage] = (),
) -> ReferenceTrace:
    """Filter and strip a raw capture stream into a ReferenceTrace."""
    events = [
        CaptureEvent.from_record(simplify_event(event))
        for event in raw_events
        if isinstance(event, Mapping) and should_keep(event)
    ]
    return ReferenceTrace(events=tuple(events), previews=tuple(previews))


def structural_record(tree: Mapping[str, Any], timestamp: Optional[int] = None) -> str:
    """Serialize a live structural tree as one FullState trace line."""
    record = {
        "type": int(EventType.FULL_SNAPSHOT),
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
        "data": simplify_snapshot({"node": tree}),
    }
    return json.dumps(record, separators=(",", ":"))


async def snapshot_now(environment: Any, *, quality: int = 50) -> LiveStateSnapshot:
    """Capture the live page once, with the same stripping as recorded snapshots.

    Nothing here waits on the page; failures such as ``EnvironmentUnreachable``
    propagate unchanged.
    """
    tree = await environment.capture_structure()
    image = await environment.screenshot(quality=quality)
    return LiveStateSnapshot(structural_trace=structural_record(tree), preview_image=image)
