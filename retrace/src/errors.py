"""Failure types shared by the recorder, the replay client and the server.

The replay client recovers ``ActionError`` subclasses with bounded retries.
Everything else ends the current run or session.
"""

from __future__ import annotations

from typing import Optional


class ReplayError(Exception):
    """Base class for every retrace failure."""


class ActionError(ReplayError):
    """A single action could not be performed against the live page."""


class ElementNotFound(ActionError):
    """The target never showed up (or never became visible) before the timeout."""

    def __init__(self, selector: str, elapsed_ms: int) -> None:
        self.selector = selector
        self.elapsed_ms = elapsed_ms
        super().__init__(
            f'Element "{selector}" not found or not visible within {elapsed_ms}ms'
        )


class OptionNotFound(ElementNotFound):
    """A native ``<select>`` has no option whose value or label matches."""

    def __init__(self, selector: str, value: Optional[str]) -> None:
        self.value = value
        self.selector = selector
        self.elapsed_ms = 0
        ActionError.__init__(self, f'Option "{value}" not found in select "{selector}"')


class InvalidTarget(ActionError):
    """The element exists but cannot take the requested action."""

    def __init__(self, action_type: str, reason: str) -> None:
        self.action_type = action_type
        self.reason = reason
        super().__init__(f"{action_type}: {reason}" if action_type else reason)


class UnsupportedAction(ActionError):
    def __init__(self, action_type: object) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class EnvironmentUnreachable(ReplayError):
    """The page or browser under automation has gone away."""


class DecisionEngineError(ReplayError):
    """The decision engine failed, or answered with something that is not an action."""


class ProtocolError(ReplayError):
    """An inbound turn message is malformed."""


class PersistenceError(ReplayError):
    """Workflow files could not be read or written."""
