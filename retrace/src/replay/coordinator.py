"""
Replay coordinator

Drives one guided replay over a websocket turn exchange:
capture state -> server decides -> execute with bounded retry -> re-capture.
Retries stay inside a single action; a failed step ends the run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake
from pydantic import ValidationError

from retrace.src.errors import ActionError, EnvironmentUnreachable, ReplayError
from retrace.src.recorder.compactor import snapshot_now
from retrace.src.replay.engine import ActionExecutionEngine
from retrace.src.replay.models import (
    ActionPayload,
    ReplayReport,
    ReplayStatus,
    StepOutcome,
    StepRecord,
)
from retrace.src.utils.models import LiveStateSnapshot

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class TurnChannel(Protocol):
    async def send(self, message: str) -> None:
        ...

    async def recv(self) -> str:
        ...


def first_message(
    workflow_id: str,
    snapshot: LiveStateSnapshot,
    user_prompt: Optional[str] = None,
) -> Dict[str, Any]:
    message: Dict[str, Any] = {"workflowId": workflow_id, "wec": snapshot.to_wire()}
    if user_prompt:
        message["userPrompt"] = user_prompt
    return message


def turn_message(snapshot: LiveStateSnapshot) -> Dict[str, Any]:
    return {"wec": snapshot.to_wire()}


class ExecutionCoordinator:
    """Runs decided actions with retry and sequences the replay loop."""

    def __init__(
        self,
        engine: ActionExecutionEngine,
        *,
        max_retries: int = 3,
        retry_backoff_ms: int = 500,
        step_settle_ms: int = 1000,
        snapshot_quality: int = 50,
        sleep: Optional[Sleep] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.engine = engine
        self.max_retries = max_retries
        self.retry_backoff_ms = retry_backoff_ms
        self.step_settle_ms = step_settle_ms
        self.snapshot_quality = snapshot_quality
        self._sleep = sleep or asyncio.sleep
        self._on_log = on_log
        self._stop_requested = False

    def stop(self) -> None:
        """Ask the loop to end at the next turn boundary."""
        self._stop_requested = True

    async def run_step(self, action: ActionPayload) -> StepOutcome:
        """Execute ``action`` up to ``max_retries`` times."""
        last_error: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self.engine.execute(action)
                return StepOutcome(success=True, result=result, attempts=attempt)
            except EnvironmentUnreachable as exc:
                logger.warning("[Coordinator] Environment unreachable: %s", exc)
                return StepOutcome(success=False, error=str(exc), attempts=attempt, fatal=True)
            except ActionError as exc:
                last_error = str(exc)
                logger.info(
                    "[Coordinator] Attempt %s/%s failed: %s", attempt, self.max_retries, exc
                )
                if attempt < self.max_retries:
                    await self._sleep(self.retry_backoff_ms / 1000.0)
        return StepOutcome(success=False, error=last_error, attempts=self.max_retries)

    async def capture(self) -> LiveStateSnapshot:
        return await snapshot_now(self.engine.environment, quality=self.snapshot_quality)

    async def run(
        self,
        websocket_url: str,
        workflow_id: str,
        user_prompt: Optional[str] = None,
    ) -> ReplayReport:
        """Connect to the orchestration server and replay ``workflow_id``."""
        report = ReplayReport(workflow_id=workflow_id)
        try:
            async with websockets.connect(websocket_url, max_size=None) as channel:
                return await self.drive(channel, workflow_id, user_prompt, report=report)
        except (OSError, InvalidHandshake) as exc:
            return self._finish(report, ReplayStatus.FAILED, f"Could not connect to {websocket_url}: {exc}")

    async def drive(
        self,
        channel: TurnChannel,
        workflow_id: str,
        user_prompt: Optional[str] = None,
        *,
        report: Optional[ReplayReport] = None,
    ) -> ReplayReport:
        """The turn loop over an already open channel."""
        report = report or ReplayReport(workflow_id=workflow_id)
        self._stop_requested = False

        try:
            snapshot = await self.capture()
        except ReplayError as exc:
            return self._finish(report, ReplayStatus.FAILED, f"Initial capture failed: {exc}")
        await channel.send(json.dumps(first_message(workflow_id, snapshot, user_prompt)))
        self._log(report, f"Started replay of workflow {workflow_id}")

        step_number = 0
        while True:
            if self._stop_requested:
                return self._finish(report, ReplayStatus.STOPPED, None)

            try:
                raw = await channel.recv()
            except ConnectionClosed:
                return self._finish(report, ReplayStatus.FAILED, "Connection closed by server")

            try:
                message = json.loads(raw)
            except (TypeError, json.JSONDecodeError):
                return self._finish(report, ReplayStatus.FAILED, "Server sent a non-JSON message")
            if not isinstance(message, dict):
                return self._finish(report, ReplayStatus.FAILED, "Server sent an unexpected message")
            if "error" in message:
                return self._finish(report, ReplayStatus.FAILED, f"Server error: {message['error']}")

            try:
                action = ActionPayload.model_validate(message)
            except ValidationError as exc:
                return self._finish(report, ReplayStatus.FAILED, f"Invalid action from server: {exc}")

            step_number += 1
            started = time.monotonic()
            self._log(report, f"Step {step_number}: {action.action_type.value} {action.selector}".rstrip())
            outcome = await self.run_step(action)
            report.steps.append(
                StepRecord(
                    step_number=step_number,
                    action=action,
                    outcome=outcome,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            )

            if not outcome.success:
                self._log(report, f"Step {step_number} failed after {outcome.attempts} attempt(s)")
                return self._finish(report, ReplayStatus.FAILED, outcome.error)
            self._log(report, f"Step {step_number} ok: {outcome.result}")

            if action.is_terminal:
                return self._finish(report, ReplayStatus.COMPLETED, None)

            await self._sleep(self.step_settle_ms / 1000.0)
            if self._stop_requested:
                return self._finish(report, ReplayStatus.STOPPED, None)

            try:
                snapshot = await self.capture()
            except ReplayError as exc:
                return self._finish(report, ReplayStatus.FAILED, f"Capture failed: {exc}")
            try:
                await channel.send(json.dumps(turn_message(snapshot)))
            except ConnectionClosed:
                return self._finish(report, ReplayStatus.FAILED, "Connection closed by server")

    def _log(self, report: ReplayReport, line: str) -> None:
        report.log.append(line)
        logger.info("[Coordinator] %s", line)
        if self._on_log:
            self._on_log(line)

    def _finish(
        self,
        report: ReplayReport,
        status: ReplayStatus,
        error: Optional[str],
    ) -> ReplayReport:
        report.status = status
        report.error = error
        if status == ReplayStatus.COMPLETED:
            self._log(report, "Workflow completed")
        elif status == ReplayStatus.STOPPED:
            self._log(report, "Stopped by user")
        else:
            self._log(report, f"Replay failed: {error}")
        return report
