import asyncio
import json

from fakes import FakeEnvironment
from retrace.src.recorder.compactor import (
    TEXT_LIMIT,
    compact,
    should_keep,
    snapshot_now,
    strip_node,
    truncate_text,
)
from retrace.src.utils.models import CaptureKind, ReferenceTrace


def _full_snapshot(timestamp: int = 1000) -> dict:
    return {
        "type": 2,
        "timestamp": timestamp,
        "data": {
            "node": {
                "type": 0,
                "id": 1,
                "childNodes": [
                    {"type": 5, "id": 2, "textContent": "comment"},
                    {
                        "type": 2,
                        "id": 3,
                        "tagName": "head",
                        "attributes": {},
                        "childNodes": [
                            {"type": 2, "id": 4, "tagName": "script", "attributes": {"src": "a.js"}, "childNodes": []},
                            {"type": 2, "id": 5, "tagName": "link", "attributes": {"rel": "shortcut icon"}, "childNodes": []},
                        ],
                    },
                    {
                        "type": 2,
                        "id": 6,
                        "tagName": "button",
                        "attributes": {
                            "id": "submit",
                            "class": "btn primary",
                            "data-testid": "submit",
                            "style": "color: red",
                            "onclick": "go()",
                        },
                        "childNodes": [{"type": 3, "id": 7, "textContent": "Send"}],
                    },
                ],
            },
            "initialOffset": {"top": 0, "left": 0},
        },
    }


def test_should_keep_policy():
    assert should_keep({"type": 2})
    assert should_keep({"type": 4, "data": {"href": "https://example.com"}})
    assert should_keep({"type": 3, "data": {"source": 2}})
    assert should_keep({"type": 3, "data": {"source": 5}})
    assert should_keep({"type": 3, "data": {"source": 3}})
    assert not should_keep({"type": 3, "data": {"source": 1}})
    assert not should_keep({"type": 3, "data": {"source": 0}})
    assert not should_keep({"type": 3, "data": {}})
    assert not should_keep({"type": 5})


def test_compact_drops_mousemove_and_strips_snapshot():
    raw = [
        {"type": 4, "timestamp": 900, "data": {"href": "https://example.com", "width": 1280, "height": 720}},
        _full_snapshot(),
        {"type": 3, "timestamp": 1100, "data": {"source": 1, "positions": [{"x": 1, "y": 2}]}},
        {"type": 3, "timestamp": 1200, "data": {"source": 2, "type": 2, "id": 6}},
    ]

    trace = compact(raw)

    assert [event.kind for event in trace.events] == [
        CaptureKind.META,
        CaptureKind.FULL_STATE,
        CaptureKind.INTERACTION,
    ]
    snapshot = trace.events[1].data
    assert set(snapshot) == {"node"}
    document = snapshot["node"]
    head, button = document["childNodes"]
    assert head["childNodes"] == []
    assert button["attributes"] == {"id": "submit", "class": "btn primary", "data-testid": "submit"}
    assert button["childNodes"] == [{"type": 3, "id": 7, "textContent": "Send"}]


def test_strip_node_is_idempotent():
    node = _full_snapshot()["data"]["node"]

    once = strip_node(node)

    assert strip_node(once) == once


def test_long_text_is_truncated():
    node = {"type": 3, "id": 1, "textContent": "x" * 500}

    stripped = strip_node(node)

    assert len(stripped["textContent"]) == TEXT_LIMIT
    assert truncate_text("short") == "short"


def test_truncate_counts_utf16_units():
    text = "\U0001F600" * 150

    truncated = truncate_text(text)

    assert len(truncated) == TEXT_LIMIT // 2
    assert len(truncated.encode("utf-16-le")) == TEXT_LIMIT * 2


def test_trace_jsonl_round_trip():
    trace = compact([_full_snapshot(), {"type": 3, "timestamp": 5, "data": {"source": 5, "text": "hi"}}])

    text = trace.to_jsonl()
    lines = text.splitlines()

    assert len(lines) == 2
    assert json.loads(lines[1]) == {"type": 3, "timestamp": 5, "data": {"source": 5, "text": "hi"}}
    assert ReferenceTrace.from_jsonl(text).records() == trace.records()


def test_snapshot_now_strips_live_tree():
    env = FakeEnvironment()

    snapshot = asyncio.run(snapshot_now(env, quality=40))

    record = json.loads(snapshot.structural_trace)
    assert record["type"] == 2
    button = record["data"]["node"]["childNodes"][0]
    assert button["attributes"] == {"id": "go"}
    assert snapshot.preview_image == env.image
