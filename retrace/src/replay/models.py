"""
Replay action models

The decision engine answers every turn with exactly one ActionPayload;
the client executes it against the live page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ActionType(str, Enum):
    """The nine action kinds the engine understands."""

    CLICK_ELEMENT = "ClickElement"
    TYPE_TEXT = "TypeText"
    SELECT_OPTION = "SelectOption"
    HOVER_ELEMENT = "HoverElement"
    SCROLL_TO = "ScrollTo"
    WAIT_FOR = "WaitFor"
    GO_TO_URL = "GoToURL"
    PRESS_KEY = "PressKey"
    FINISH = "Finish"


# Kinds that cannot run without a located element.
TARGETED_ACTIONS = frozenset(
    {
        ActionType.CLICK_ELEMENT,
        ActionType.TYPE_TEXT,
        ActionType.SELECT_OPTION,
        ActionType.HOVER_ELEMENT,
        ActionType.PRESS_KEY,
    }
)


class ActionOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    delay_ms: int = Field(default=500, ge=0, description="Settle time after the action")
    force: bool = Field(default=False, description="Act even if the element is not visible")
    clear_first: bool = Field(default=True, description="Select existing text before typing")
    scroll_into_view: bool = Field(default=True)


class ActionPayload(BaseModel):
    """
    One decided action.

    Example:
    {
        "reasoning": "Step 3 of the recording submits the login form",
        "action_type": "ClickElement",
        "selector": "button[data-testid=\\"submit\\"]",
        "options": {"delay_ms": 300},
        "is_complete": false
    }
    """

    model_config = ConfigDict(extra="ignore")

    reasoning: str = Field(..., description="Why this action was chosen")
    action_type: ActionType
    selector: str = Field(default="", description="CSS selector of the target")
    value: Optional[str] = Field(default=None, description="Text, option, URL, key or pixels")
    options: ActionOptions = Field(default_factory=ActionOptions)
    is_complete: bool

    @field_validator("selector", mode="before")
    @classmethod
    def _none_selector(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (int, float)):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator("options", mode="before")
    @classmethod
    def _default_options(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _require_selector(self) -> "ActionPayload":
        if not self.is_terminal and self.action_type in TARGETED_ACTIONS and not self.selector:
            raise ValueError(f"selector is required for {self.action_type.value}")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.is_complete or self.action_type == ActionType.FINISH

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass
class StepOutcome:
    """Result of running one action with retries."""

    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    # The page went away; retrying cannot help.
    fatal: bool = False


class ReplayStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class StepRecord:
    step_number: int
    action: ActionPayload
    outcome: StepOutcome
    duration_ms: int = 0


@dataclass
class ReplayReport:
    """Running log and final status of one replay run."""

    workflow_id: str
    status: ReplayStatus = ReplayStatus.RUNNING
    steps: List[StepRecord] = field(default_factory=list)
    error: Optional[str] = None
    log: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == ReplayStatus.COMPLETED
