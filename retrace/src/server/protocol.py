"""Turn exchange messages (client -> server)."""
from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from retrace.src.errors import ProtocolError
from retrace.src.server.storage import is_safe_segment

FIRST_MESSAGE_ERROR = "First message must contain workflowId and wec"
TURN_MESSAGE_ERROR = "Message must contain wec"


class WireSnapshot(BaseModel):
    """A live snapshot as sent over the wire."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    structural_trace: str = Field(
        validation_alias=AliasChoices("structuralTrace", "jsonl", "structural_trace")
    )
    preview_image: str = Field(
        default="",
        validation_alias=AliasChoices("previewImage", "image", "preview_image"),
    )


class FirstMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workflow_id: str = Field(validation_alias=AliasChoices("workflowId", "workflow_id"))
    user_prompt: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("userPrompt", "user_prompt")
    )
    wec: WireSnapshot

    @field_validator("workflow_id")
    @classmethod
    def _safe_id(cls, value: str) -> str:
        if not is_safe_segment(value):
            raise ValueError("invalid workflow id")
        return value


class TurnMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wec: WireSnapshot


def decode(raw: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError("Message is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    return data


def parse_first(data: Mapping[str, Any]) -> FirstMessage:
    try:
        return FirstMessage.model_validate(dict(data))
    except ValidationError as exc:
        raise ProtocolError(FIRST_MESSAGE_ERROR) from exc


def parse_turn(data: Mapping[str, Any]) -> TurnMessage:
    try:
        return TurnMessage.model_validate(dict(data))
    except ValidationError as exc:
        raise ProtocolError(TURN_MESSAGE_ERROR) from exc
