"""
Decision engines

A decision engine maps (foundation, turn history) to the next ActionPayload.
LLMDecisionEngine asks an OpenAI-compatible chat model; MockDecisionEngine
finishes after a fixed number of turns and is meant for local runs.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import openai
from pydantic import ValidationError

from retrace.src.errors import DecisionEngineError
from retrace.src.replay.models import ActionPayload, ActionType
from retrace.src.server.prompt import SYSTEM_PROMPT, build_context_text
from retrace.src.server.protocol import WireSnapshot
from retrace.src.server.storage import Foundation
from retrace.src.utils.config import LLMConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionRequest:
    foundation: Foundation
    history: Sequence[WireSnapshot]
    user_prompt: Optional[str] = None


class DecisionEngine(Protocol):
    async def decide(self, request: DecisionRequest) -> ActionPayload:
        ...


def image_data_url(image_base64: str) -> str:
    if image_base64.startswith("data:"):
        return image_base64
    mime = "image/jpeg" if image_base64.startswith("/9j/") else "image/png"
    return f"data:{mime};base64,{image_base64}"


def parse_action_response(response_text: Optional[str]) -> ActionPayload:
    """Parse model output into an ActionPayload or raise DecisionEngineError."""
    text = (response_text or "").strip()
    # Strip markdown code blocks if present
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    if not text:
        raise DecisionEngineError("Decision engine returned an empty response")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecisionEngineError(f"Decision engine returned non-JSON: {text[:200]}") from exc
    if not isinstance(data, dict):
        raise DecisionEngineError("Decision engine response is not a JSON object")
    try:
        return ActionPayload.model_validate(data)
    except ValidationError as exc:
        raise DecisionEngineError(f"Decision engine response is not a valid action: {exc}") from exc


def build_messages(request: DecisionRequest) -> List[Dict[str, Any]]:
    foundation = request.foundation
    text = build_context_text(
        foundation.trace_jsonl,
        len(foundation.images),
        [turn.structural_trace for turn in request.history],
        request.user_prompt,
    )
    content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    for image in foundation.images:
        content.append({"type": "image_url", "image_url": {"url": image_data_url(image)}})
    for turn in request.history:
        if turn.preview_image:
            content.append(
                {"type": "image_url", "image_url": {"url": image_data_url(turn.preview_image)}}
            )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


class LLMDecisionEngine:
    """Decision engine backed by an OpenAI-compatible chat completions API."""

    def __init__(self, config: Optional[LLMConfig] = None, client: Any = None) -> None:
        self.config = config or LLMConfig()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.config.api_key:
                raise DecisionEngineError("OPENROUTER_API_KEY not found in environment")
            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=float(self.config.timeout),
            )
        return self._client

    async def decide(self, request: DecisionRequest) -> ActionPayload:
        client = self._get_client()
        logger.info(
            "[Decision] %s history turns, %s foundation images",
            len(request.history),
            len(request.foundation.images),
        )
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=build_messages(request),
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as exc:
            logger.error("[Decision] API error: %s", exc)
            raise DecisionEngineError(f"Decision engine request failed: {exc}") from exc

        if not response.choices or response.choices[0].message is None:
            raise DecisionEngineError("Decision engine returned no choices")
        return parse_action_response(response.choices[0].message.content)


class MockDecisionEngine:
    """Waits a little each turn and declares the workflow complete after N turns."""

    def __init__(self, complete_after: int = 3, delay_ms: int = 0) -> None:
        self.complete_after = complete_after
        self.delay_ms = delay_ms

    async def decide(self, request: DecisionRequest) -> ActionPayload:
        if self.delay_ms:
            await asyncio.sleep(self.delay_ms / 1000.0)
        turns = len(request.history)
        if turns >= self.complete_after:
            return ActionPayload(
                reasoning="Workflow completed successfully",
                action_type=ActionType.FINISH,
                is_complete=True,
            )
        return ActionPayload(
            reasoning=f"Processing step {turns}",
            action_type=ActionType.WAIT_FOR,
            selector="duration:500",
            is_complete=False,
        )
