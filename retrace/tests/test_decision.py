import asyncio
import json
from types import SimpleNamespace

import pytest

from retrace.src.errors import DecisionEngineError
from retrace.src.replay.models import ActionType
from retrace.src.server.decision import (
    DecisionRequest,
    LLMDecisionEngine,
    MockDecisionEngine,
    build_messages,
    image_data_url,
    parse_action_response,
)
from retrace.src.server.protocol import WireSnapshot
from retrace.src.server.storage import Foundation
from retrace.src.utils.config import LLMConfig


class FakeCompletions:
    def __init__(self, content: str) -> None:
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(content: str):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _request(turns: int = 1) -> DecisionRequest:
    foundation = Foundation(
        workflow_id="wf",
        trace_jsonl='{"type":2}',
        images=["/9j/AAAA"],
        has_trace=True,
    )
    history = tuple(
        WireSnapshot(structuralTrace=f'{{"turn":{i}}}', previewImage="iVBORw0") for i in range(turns)
    )
    return DecisionRequest(foundation=foundation, history=history, user_prompt="be quick")


def test_parse_action_response_strips_code_fence():
    text = '```json\n{"reasoning": "r", "action_type": "ClickElement", "selector": "#a", "is_complete": false}\n```'

    action = parse_action_response(text)

    assert action.action_type == ActionType.CLICK_ELEMENT
    assert action.selector == "#a"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "not json",
        "[1, 2]",
        '{"action_type": "Teleport", "is_complete": false}',
        '{"action_type": "ClickElement", "is_complete": false}',
        '{"action_type": "ClickElement", "selector": "#a", "is_complete": false}',
    ],
)
def test_parse_action_response_rejects_bad_output(text):
    with pytest.raises(DecisionEngineError):
        parse_action_response(text)


def test_image_data_url_detects_mime():
    assert image_data_url("/9j/abc") == "data:image/jpeg;base64,/9j/abc"
    assert image_data_url("iVBORabc") == "data:image/png;base64,iVBORabc"
    assert image_data_url("data:image/png;base64,x") == "data:image/png;base64,x"


def test_build_messages_orders_foundation_then_history_images():
    messages = build_messages(_request(turns=2))

    assert messages[0]["role"] == "system"
    content = messages[1]["content"]
    assert content[0]["type"] == "text"
    assert "### Turn 2" in content[0]["text"]
    assert "be quick" in content[0]["text"]
    urls = [part["image_url"]["url"] for part in content[1:]]
    assert urls[0].startswith("data:image/jpeg")
    assert all(url.startswith("data:image/png") for url in urls[1:])
    assert len(urls) == 3


def test_llm_engine_calls_chat_completions():
    reply = {"reasoning": "done", "action_type": "Finish", "is_complete": True}
    client, completions = _fake_client(json.dumps(reply))
    engine = LLMDecisionEngine(LLMConfig(api_key="k", model="test-model"), client=client)

    action = asyncio.run(engine.decide(_request()))

    assert action.is_complete
    assert completions.calls[0]["model"] == "test-model"
    assert completions.calls[0]["response_format"] == {"type": "json_object"}


def test_llm_engine_without_key_fails():
    engine = LLMDecisionEngine(LLMConfig(api_key=None))

    with pytest.raises(DecisionEngineError):
        asyncio.run(engine.decide(_request()))


def test_mock_engine_finishes_after_limit():
    engine = MockDecisionEngine(complete_after=2)

    first = asyncio.run(engine.decide(_request(turns=1)))
    last = asyncio.run(engine.decide(_request(turns=2)))

    assert first.action_type == ActionType.WAIT_FOR
    assert first.selector == "duration:500"
    assert not first.is_complete
    assert last.action_type == ActionType.FINISH
    assert last.is_complete
