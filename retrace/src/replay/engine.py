"""
Action execution engine

Maps one decided action onto the live page: locate the target with a bounded
poll, bring it into view, perform the action and let the page settle.
The engine keeps no state between calls.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from retrace.src.errors import (
    ElementNotFound,
    InvalidTarget,
    OptionNotFound,
    UnsupportedAction,
)
from retrace.src.replay.environment import LiveEnvironment
from retrace.src.replay.models import ActionPayload, ActionType, TARGETED_ACTIONS

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]
Handler = Callable[[ActionPayload, Any], Awaitable[Optional[str]]]

COMPLETED_MESSAGE = "Workflow Completed"
CUSTOM_DROPDOWN_MESSAGE = "Clicked custom dropdown container"
DURATION_PREFIX = "duration:"
TEXT_INPUT_TAGS = ("INPUT", "TEXTAREA")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_int(raw: Optional[str]) -> Optional[int]:
    """parseInt-style: leading integer of ``raw`` or None."""
    if raw is None:
        return None
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else None


def coerce_action(action: Union[ActionPayload, Mapping[str, Any]]) -> ActionPayload:
    if isinstance(action, ActionPayload):
        return action
    action_type = action.get("action_type")
    try:
        ActionType(action_type)
    except ValueError:
        raise UnsupportedAction(action_type) from None
    try:
        return ActionPayload.model_validate(dict(action))
    except ValidationError as exc:
        raise InvalidTarget(str(action_type), f"malformed action: {exc.errors()[0]['msg']}") from exc


class ActionExecutionEngine:
    """Executes ActionPayloads against a LiveEnvironment."""

    def __init__(
        self,
        environment: LiveEnvironment,
        *,
        locate_timeout_ms: int = 5000,
        poll_interval_ms: int = 100,
        scroll_settle_ms: int = 300,
        focus_settle_ms: int = 50,
        default_wait_ms: int = 2000,
        sleep: Optional[Sleep] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.environment = environment
        self.locate_timeout_ms = locate_timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.scroll_settle_ms = scroll_settle_ms
        self.focus_settle_ms = focus_settle_ms
        self.default_wait_ms = default_wait_ms
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

        self._handlers: Dict[ActionType, Handler] = {
            ActionType.CLICK_ELEMENT: self._click,
            ActionType.TYPE_TEXT: self._type_text,
            ActionType.SELECT_OPTION: self._select_option,
            ActionType.HOVER_ELEMENT: self._hover,
            ActionType.SCROLL_TO: self._scroll_to,
            ActionType.PRESS_KEY: self._press_key,
        }

    async def _pause(self, ms: int) -> None:
        if ms > 0:
            await self._sleep(ms / 1000.0)

    # ------------------------------------------------------------------
    async def execute(self, action: Union[ActionPayload, Mapping[str, Any]]) -> str:
        """Run one action and return a human-readable outcome."""
        if isinstance(action, Mapping) and (
            action.get("is_complete") is True
            or action.get("action_type") == ActionType.FINISH.value
        ):
            return COMPLETED_MESSAGE
        action = coerce_action(action)
        if action.is_terminal:
            return COMPLETED_MESSAGE

        if action.action_type == ActionType.WAIT_FOR:
            return await self._wait_for(action)
        if action.action_type == ActionType.GO_TO_URL:
            return await self._go_to_url(action)

        handler = self._handlers.get(action.action_type)
        if handler is None:
            raise UnsupportedAction(action.action_type)

        element = None
        if action.action_type in TARGETED_ACTIONS:
            if not action.selector:
                raise InvalidTarget(action.action_type.value, "a selector is required")
            element = await self.locate(action.selector, visible=not action.options.force)
            if action.options.scroll_into_view:
                await self._bring_into_view(element)

        early_result = await handler(action, element)
        if early_result is not None:
            return early_result

        await self._pause(action.options.delay_ms)
        return f"Executed {action.action_type.value} on {action.selector}"

    async def locate(
        self,
        selector: str,
        *,
        visible: bool = True,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        """Poll for ``selector`` until found (and visible) or the timeout passes."""
        timeout = self.locate_timeout_ms if timeout_ms is None else timeout_ms
        started = self._clock()
        while (self._clock() - started) * 1000 < timeout:
            element = await self.environment.query(selector)
            if element is not None:
                if not visible or await self.environment.is_visible(element):
                    return element
            await self._pause(self.poll_interval_ms)
        elapsed_ms = int(round((self._clock() - started) * 1000))
        logger.debug("[Engine] %s not found after %sms", selector, elapsed_ms)
        raise ElementNotFound(selector, elapsed_ms)

    async def _bring_into_view(self, element: Any) -> None:
        if await self.environment.scroll_into_view(element, "center"):
            await self._pause(self.scroll_settle_ms)

    # ------------------------------------------------------------------
    async def _wait_for(self, action: ActionPayload) -> str:
        selector = action.selector
        if selector.startswith(DURATION_PREFIX):
            duration = parse_int(selector[len(DURATION_PREFIX):])
            if duration is None:
                raise InvalidTarget(action.action_type.value, f'bad duration "{selector}"')
            await self._pause(duration)
        elif selector:
            await self.locate(selector, visible=True)
        else:
            await self._pause(self.default_wait_ms)
        return f"Waited for {selector or 'duration'}"

    async def _go_to_url(self, action: ActionPayload) -> str:
        if not action.value:
            raise InvalidTarget(action.action_type.value, "a URL value is required")
        await self.environment.navigate(action.value)
        return f"Navigated to {action.value}"

    async def _click(self, action: ActionPayload, element: Any) -> None:
        if element is None:
            raise InvalidTarget(action.action_type.value, "element required")
        await self.environment.focus(element)
        await self._pause(self.focus_settle_ms)
        await self.environment.click(element)

    async def _type_text(self, action: ActionPayload, element: Any) -> None:
        if element is None:
            raise InvalidTarget(action.action_type.value, "element required")
        tag = await self.environment.tag_name(element)
        if tag not in TEXT_INPUT_TAGS:
            raise InvalidTarget(
                action.action_type.value,
                f"target must be an input or textarea, got <{tag.lower()}>",
            )
        await self.environment.focus(element)
        await self._pause(self.focus_settle_ms)
        if action.options.clear_first:
            await self.environment.select_text(element)
        await self.environment.set_value(element, action.value or "")
        for event_type in ("input", "change", "blur"):
            await self.environment.dispatch(element, event_type)

    async def _select_option(self, action: ActionPayload, element: Any) -> Optional[str]:
        if element is None:
            raise InvalidTarget(action.action_type.value, "element required")
        tag = await self.environment.tag_name(element)
        if tag != "SELECT":
            # Custom widgets get one activation; option discovery is left to the next turn.
            await self.environment.click(element)
            return CUSTOM_DROPDOWN_MESSAGE

        wanted = action.value
        options = await self.environment.list_options(element)
        for index, (value, text) in enumerate(options):
            if value == wanted or text == wanted:
                await self.environment.select_index(element, index)
                for event_type in ("input", "change", "blur"):
                    await self.environment.dispatch(element, event_type)
                return None
        raise OptionNotFound(action.selector, wanted)

    async def _hover(self, action: ActionPayload, element: Any) -> None:
        if element is None:
            raise InvalidTarget(action.action_type.value, "element required")
        await self.environment.dispatch(element, "mouseover")

    async def _scroll_to(self, action: ActionPayload, element: Any) -> None:
        pixels = parse_int(action.value)
        if action.selector:
            try:
                element = await self.environment.query(action.selector)
            except InvalidTarget:
                if pixels is None:
                    raise
                logger.debug("[Engine] Bad selector %s, scrolling %spx instead", action.selector, pixels)
        if element is not None:
            await self.environment.scroll_into_view(element, "start")
            return None
        if pixels is None:
            raise InvalidTarget(
                action.action_type.value, "ScrollTo requires a selector or a value (pixels)"
            )
        await self.environment.scroll_by(pixels)
        return None

    async def _press_key(self, action: ActionPayload, element: Any) -> None:
        if element is None:
            raise InvalidTarget(action.action_type.value, "element required (usually a focused input)")
        key = action.value or "Enter"
        await self.environment.dispatch(element, "keydown", {"key": key, "code": key})
