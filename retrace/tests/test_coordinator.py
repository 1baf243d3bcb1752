import asyncio
import base64

from fakes import FakeChannel, FakeClock, FakeElement, FakeEnvironment
from retrace.src.replay.coordinator import ExecutionCoordinator, first_message
from retrace.src.replay.engine import ActionExecutionEngine
from retrace.src.replay.models import ActionPayload, ActionType, ReplayStatus
from retrace.src.utils.models import LiveStateSnapshot


def _coordinator(env: FakeEnvironment, **kwargs) -> tuple[ExecutionCoordinator, FakeClock]:
    clock = FakeClock()
    engine = ActionExecutionEngine(env, sleep=clock.sleep, clock=clock)
    return ExecutionCoordinator(engine, sleep=clock.sleep, **kwargs), clock


def _click(selector: str) -> ActionPayload:
    return ActionPayload(reasoning="r", action_type=ActionType.CLICK_ELEMENT, selector=selector, is_complete=False)


def test_run_step_retries_missing_element_three_times():
    env = FakeEnvironment()
    coordinator, clock = _coordinator(env)

    outcome = asyncio.run(coordinator.run_step(_click("#login-btn")))

    assert not outcome.success
    assert outcome.attempts == 3
    assert "#login-btn" in outcome.error
    assert clock.sleeps.count(500) == 2


def test_run_step_recovers_on_later_attempt():
    button = FakeElement("BUTTON")
    env = FakeEnvironment({"#go": button})
    env.fail_clicks = 1
    coordinator, _ = _coordinator(env)

    outcome = asyncio.run(coordinator.run_step(_click("#go")))

    assert outcome.success
    assert outcome.attempts == 2
    assert button.clicks == 1


def test_unreachable_environment_is_fatal_without_retry():
    env = FakeEnvironment({"#go": FakeElement("BUTTON")})
    env.unreachable = True
    coordinator, _ = _coordinator(env)

    outcome = asyncio.run(coordinator.run_step(_click("#go")))

    assert not outcome.success
    assert outcome.fatal
    assert outcome.attempts == 1


def test_first_message_carries_workflow_and_snapshot():
    snapshot = LiveStateSnapshot(structural_trace='{"type":2}', preview_image=b"img")

    message = first_message("wf-1", snapshot, "use the staging account")

    assert message["workflowId"] == "wf-1"
    assert message["userPrompt"] == "use the staging account"
    assert message["wec"]["structuralTrace"] == '{"type":2}'
    assert base64.b64decode(message["wec"]["previewImage"]) == b"img"
    assert "userPrompt" not in first_message("wf-1", snapshot)


def test_drive_completes_workflow():
    button = FakeElement("BUTTON")
    env = FakeEnvironment({"#go": button})
    coordinator, _ = _coordinator(env)
    channel = FakeChannel(
        [
            {"reasoning": "step 1", "action_type": "ClickElement", "selector": "#go", "is_complete": False},
            {"reasoning": "done", "action_type": "Finish", "is_complete": True},
        ]
    )

    report = asyncio.run(coordinator.drive(channel, "wf-1"))

    assert report.status == ReplayStatus.COMPLETED
    assert report.succeeded
    assert [step.outcome.success for step in report.steps] == [True, True]
    assert button.clicks == 1
    assert channel.sent[0]["workflowId"] == "wf-1"
    assert set(channel.sent[1]) == {"wec"}
    assert len(channel.sent) == 2


def test_drive_stops_on_failed_step():
    coordinator, _ = _coordinator(FakeEnvironment())
    channel = FakeChannel(
        [{"reasoning": "r", "action_type": "ClickElement", "selector": "#missing", "is_complete": False}]
    )

    report = asyncio.run(coordinator.drive(channel, "wf-1"))

    assert report.status == ReplayStatus.FAILED
    assert report.steps[0].outcome.attempts == 3
    assert len(channel.sent) == 1


def test_drive_reports_server_error():
    coordinator, _ = _coordinator(FakeEnvironment())
    channel = FakeChannel([{"error": "Failed to get action"}])

    report = asyncio.run(coordinator.drive(channel, "wf-1"))

    assert report.status == ReplayStatus.FAILED
    assert "Failed to get action" in report.error
    assert report.steps == []


def test_drive_fails_when_connection_closes():
    coordinator, _ = _coordinator(FakeEnvironment())

    report = asyncio.run(coordinator.drive(FakeChannel([]), "wf-1"))

    assert report.status == ReplayStatus.FAILED
    assert "closed" in report.error


def test_stop_request_ends_loop_at_turn_boundary():
    env = FakeEnvironment({"#go": FakeElement("BUTTON")})
    coordinator, _ = _coordinator(env)

    def on_log(line: str) -> None:
        if line.startswith("Step 1 ok"):
            coordinator.stop()

    coordinator._on_log = on_log
    channel = FakeChannel(
        [
            {"reasoning": "r", "action_type": "ClickElement", "selector": "#go", "is_complete": False},
            {"reasoning": "r", "action_type": "ClickElement", "selector": "#go", "is_complete": False},
        ]
    )

    report = asyncio.run(coordinator.drive(channel, "wf-1"))

    assert report.status == ReplayStatus.STOPPED
    assert len(report.steps) == 1
    assert len(channel.sent) == 1
