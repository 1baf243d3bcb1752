import asyncio

import pytest

from fakes import FakeClock, FakeElement, FakeEnvironment
from retrace.src.errors import ElementNotFound, InvalidTarget, OptionNotFound, UnsupportedAction
from retrace.src.replay.engine import ActionExecutionEngine, coerce_action, parse_int


def _engine(env: FakeEnvironment) -> tuple[ActionExecutionEngine, FakeClock]:
    clock = FakeClock()
    return ActionExecutionEngine(env, sleep=clock.sleep, clock=clock), clock


def _run(engine: ActionExecutionEngine, action):
    return asyncio.run(engine.execute(action))


def test_parse_int_reads_leading_integer():
    assert parse_int("300px") == 300
    assert parse_int(" -40") == -40
    assert parse_int("abc") is None
    assert parse_int(None) is None


def test_click_missing_element_times_out_after_locate_budget():
    env = FakeEnvironment()
    engine, clock = _engine(env)

    with pytest.raises(ElementNotFound) as excinfo:
        _run(engine, {"reasoning": "r", "action_type": "ClickElement", "selector": "#login-btn", "is_complete": False})

    assert excinfo.value.elapsed_ms == 5000
    assert "#login-btn" in str(excinfo.value)
    assert "5000ms" in str(excinfo.value)
    assert env.queries.count("#login-btn") == 50


def test_click_focuses_scrolls_and_settles():
    button = FakeElement("BUTTON")
    env = FakeEnvironment({"#go": button})
    engine, clock = _engine(env)

    result = _run(engine, {"reasoning": "r", "action_type": "ClickElement", "selector": "#go", "is_complete": False})

    assert result == "Executed ClickElement on #go"
    assert button.focused
    assert button.clicks == 1
    assert button.scrolled_to == "center"
    assert clock.sleeps == [300, 50, 500]


def test_invisible_element_is_not_found_unless_forced():
    hidden = FakeElement("BUTTON", visible=False)
    env = FakeEnvironment({"#hidden": hidden})
    engine, _ = _engine(env)

    with pytest.raises(ElementNotFound):
        _run(engine, {"reasoning": "r", "action_type": "ClickElement", "selector": "#hidden", "is_complete": False})

    _run(
        engine,
        {
            "reasoning": "r",
            "action_type": "ClickElement",
            "selector": "#hidden",
            "options": {"force": True},
            "is_complete": False,
        },
    )
    assert hidden.clicks == 1


def test_type_text_sets_value_and_fires_events():
    field = FakeElement("INPUT", value="old")
    env = FakeEnvironment({"#email": field})
    engine, _ = _engine(env)

    _run(
        engine,
        {"reasoning": "r", "action_type": "TypeText", "selector": "#email", "value": "a@b.co", "is_complete": False},
    )

    assert field.value == "a@b.co"
    assert field.text_selected
    assert field.event_types == ["input", "change", "blur"]


def test_type_text_on_non_input_fails_without_events():
    div = FakeElement("DIV")
    env = FakeEnvironment({"#box": div})
    engine, _ = _engine(env)

    with pytest.raises(InvalidTarget):
        _run(engine, {"reasoning": "r", "action_type": "TypeText", "selector": "#box", "value": "x", "is_complete": False})

    assert div.events == []
    assert div.value == ""


def test_select_option_matches_visible_text():
    select = FakeElement("SELECT", options=[("us", "United States"), ("ca", "Canada")])
    env = FakeEnvironment({"#country": select})
    engine, _ = _engine(env)

    result = _run(
        engine,
        {"reasoning": "r", "action_type": "SelectOption", "selector": "#country", "value": "Canada", "is_complete": False},
    )

    assert result == "Executed SelectOption on #country"
    assert select.selected_index == 1
    assert select.value == "ca"
    assert "change" in select.event_types


def test_select_option_missing_value_raises():
    select = FakeElement("SELECT", options=[("us", "United States")])
    engine, _ = _engine(FakeEnvironment({"#country": select}))

    with pytest.raises(OptionNotFound):
        _run(
            engine,
            {"reasoning": "r", "action_type": "SelectOption", "selector": "#country", "value": "Mars", "is_complete": False},
        )
    assert select.selected_index == -1


def test_select_option_on_custom_dropdown_clicks_container():
    container = FakeElement("DIV")
    engine, clock = _engine(FakeEnvironment({".dropdown": container}))

    result = _run(
        engine,
        {"reasoning": "r", "action_type": "SelectOption", "selector": ".dropdown", "value": "Blue", "is_complete": False},
    )

    assert result == "Clicked custom dropdown container"
    assert container.clicks == 1
    assert 500 not in clock.sleeps


def test_hover_and_press_key_dispatch_events():
    target = FakeElement("INPUT")
    engine, _ = _engine(FakeEnvironment({"#q": target}))

    _run(engine, {"reasoning": "r", "action_type": "HoverElement", "selector": "#q", "is_complete": False})
    _run(engine, {"reasoning": "r", "action_type": "PressKey", "selector": "#q", "is_complete": False})
    _run(engine, {"reasoning": "r", "action_type": "PressKey", "selector": "#q", "value": "Escape", "is_complete": False})

    assert target.events == [
        ("mouseover", {}),
        ("keydown", {"key": "Enter", "code": "Enter"}),
        ("keydown", {"key": "Escape", "code": "Escape"}),
    ]


def test_finish_short_circuits_without_touching_page():
    env = FakeEnvironment()
    engine, clock = _engine(env)

    assert _run(engine, {"reasoning": "r", "action_type": "Finish", "is_complete": True}) == "Workflow Completed"
    assert _run(engine, {"reasoning": "r", "action_type": "ClickElement", "is_complete": True}) == "Workflow Completed"
    assert env.queries == []
    assert clock.sleeps == []


def test_unknown_action_type_is_rejected():
    engine, _ = _engine(FakeEnvironment())

    with pytest.raises(UnsupportedAction) as excinfo:
        _run(engine, {"reasoning": "r", "action_type": "DragAndDrop", "selector": "#a", "is_complete": False})
    assert "DragAndDrop" in str(excinfo.value)


def test_wait_for_duration_and_selector():
    env = FakeEnvironment({"#ready": FakeElement("DIV")})
    engine, clock = _engine(env)

    _run(engine, {"reasoning": "r", "action_type": "WaitFor", "selector": "duration:1200", "is_complete": False})
    assert clock.sleeps == [1200]

    result = _run(engine, {"reasoning": "r", "action_type": "WaitFor", "selector": "#ready", "is_complete": False})
    assert result == "Waited for #ready"

    clock.sleeps.clear()
    _run(engine, {"reasoning": "r", "action_type": "WaitFor", "is_complete": False})
    assert clock.sleeps == [2000]


def test_go_to_url_navigates():
    env = FakeEnvironment()
    engine, _ = _engine(env)

    _run(engine, {"reasoning": "r", "action_type": "GoToURL", "value": "https://example.com/a", "is_complete": False})
    assert env.navigations == ["https://example.com/a"]

    with pytest.raises(InvalidTarget):
        _run(engine, {"reasoning": "r", "action_type": "GoToURL", "is_complete": False})


def test_scroll_to_selector_or_pixels():
    section = FakeElement("SECTION")
    env = FakeEnvironment({"#pricing": section})
    engine, _ = _engine(env)

    _run(engine, {"reasoning": "r", "action_type": "ScrollTo", "selector": "#pricing", "is_complete": False})
    assert section.scrolled_to == "start"

    _run(engine, {"reasoning": "r", "action_type": "ScrollTo", "value": 600, "is_complete": False})
    assert env.scrolled_by == [600]

    with pytest.raises(InvalidTarget):
        _run(engine, {"reasoning": "r", "action_type": "ScrollTo", "is_complete": False})


def test_coerce_action_rejects_missing_selector():
    with pytest.raises(InvalidTarget):
        coerce_action({"reasoning": "r", "action_type": "ClickElement", "is_complete": False})


def test_scroll_to_falls_back_to_pixels_on_bad_selector():
    env = FakeEnvironment()
    env.invalid_selectors.append("div[")
    engine, _ = _engine(env)

    _run(engine, {"reasoning": "r", "action_type": "ScrollTo", "selector": "div[", "value": "400", "is_complete": False})
    assert env.scrolled_by == [400]

    with pytest.raises(InvalidTarget):
        _run(engine, {"reasoning": "r", "action_type": "ScrollTo", "selector": "div[", "is_complete": False})
