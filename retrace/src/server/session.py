"""Per-connection orchestration session.

AwaitingFoundation -> Active on a valid first message (workflow id + live
snapshot); Active -> Terminated when a terminal action is emitted, when the
decision engine fails, or when the connection goes away.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from retrace.src.errors import DecisionEngineError, PersistenceError, ProtocolError
from retrace.src.server.decision import DecisionEngine, DecisionRequest
from retrace.src.server.protocol import WireSnapshot, decode, parse_first, parse_turn
from retrace.src.server.storage import Foundation

logger = logging.getLogger(__name__)

FoundationLoader = Callable[[str], Awaitable[Foundation]]


class SessionState(str, Enum):
    AWAITING_FOUNDATION = "AwaitingFoundation"
    ACTIVE = "Active"
    TERMINATED = "Terminated"


@dataclass(frozen=True)
class SessionReply:
    payload: Dict[str, Any]
    close: bool = False


def _error(message: str, close: bool = False) -> SessionReply:
    return SessionReply(payload={"error": message}, close=close)


class OrchestrationSession:
    def __init__(
        self,
        decision_engine: DecisionEngine,
        load_foundation: FoundationLoader,
        *,
        require_trace: bool = False,
    ) -> None:
        self._engine = decision_engine
        self._load_foundation = load_foundation
        self._require_trace = require_trace
        self._state = SessionState.AWAITING_FOUNDATION
        self._history: List[WireSnapshot] = []
        self._workflow_id: Optional[str] = None
        self._user_prompt: Optional[str] = None
        self._foundation: Optional[Foundation] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def workflow_id(self) -> Optional[str]:
        return self._workflow_id

    @property
    def history(self) -> Tuple[WireSnapshot, ...]:
        return tuple(self._history)

    @property
    def user_prompt(self) -> Optional[str]:
        return self._user_prompt

    @property
    def foundation(self) -> Optional[Foundation]:
        return self._foundation

    def close(self) -> None:
        if self._state is not SessionState.TERMINATED:
            logger.info("[Session] %s closed", self._workflow_id or "(no workflow)")
        self._state = SessionState.TERMINATED

    async def handle(self, raw: Union[str, bytes, Mapping[str, Any]]) -> SessionReply:
        """Process one inbound message and return the reply to send."""
        if self._state is SessionState.TERMINATED:
            return _error("Session has ended", close=True)

        try:
            data = decode(raw)
            if self._state is SessionState.AWAITING_FOUNDATION:
                first = parse_first(data)
                snapshot = first.wec
            else:
                first = None
                snapshot = parse_turn(data).wec
        except ProtocolError as exc:
            logger.warning("[Session] Rejected message: %s", exc)
            return _error(str(exc))

        if first is not None:
            reply = await self._activate(first.workflow_id, first.user_prompt)
            if reply is not None:
                return reply

        self._history.append(snapshot)
        return await self._decide()

    async def _activate(self, workflow_id: str, user_prompt: Optional[str]) -> Optional[SessionReply]:
        try:
            foundation = await self._load_foundation(workflow_id)
        except PersistenceError as exc:
            logger.error("[Session] Could not load workflow %s: %s", workflow_id, exc)
            self.close()
            return _error(f"Failed to load workflow {workflow_id}", close=True)

        if not foundation.has_trace:
            if self._require_trace:
                logger.error("[Session] No structural trace for workflow %s", workflow_id)
                self.close()
                return _error(f"No structural trace found for workflow {workflow_id}", close=True)
            logger.warning(
                "[Session] No structural trace for workflow %s; continuing without one", workflow_id
            )

        self._workflow_id = workflow_id
        self._user_prompt = user_prompt
        self._foundation = foundation
        self._state = SessionState.ACTIVE
        logger.info(
            "[Session] Workflow %s active (%s preview images)", workflow_id, len(foundation.images)
        )
        return None

    async def _decide(self) -> SessionReply:
        if self._foundation is None:
            raise RuntimeError("Session has no foundation loaded")
        request = DecisionRequest(
            foundation=self._foundation,
            history=tuple(self._history),
            user_prompt=self._user_prompt,
        )
        try:
            action = await self._engine.decide(request)
        except DecisionEngineError as exc:
            logger.error("[Session] Decision failed for %s: %s", self._workflow_id, exc)
            self.close()
            return _error(f"Failed to get action: {exc}", close=True)

        logger.info(
            "[Session] Turn %s -> %s %s",
            len(self._history),
            action.action_type.value,
            action.selector,
        )
        if action.is_terminal:
            self.close()
            return SessionReply(payload=action.to_wire(), close=True)
        return SessionReply(payload=action.to_wire())
