from __future__ import annotations

import pytest

from ecosync.models import CreatedBy, Mode, Routine, RoutineAction, Schedule, WEEKDAYS
from ecosync.tools import CHAT_TOOL_DEFINITIONS, ToolRegistry, ToolSpec

NO_ARGS = {"type": "object", "properties": {}}


async def _echo(value: str) -> dict:
    return {"value": value}


async def _boom() -> dict:
    raise RuntimeError("kaboom")


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry(
        [
            ToolSpec(
                "echo",
                "Echo a value.",
                {"type": "object", "properties": {"value": {"type": "string"}}, "required": ["value"]},
                _echo,
            ),
            ToolSpec("boom", "Always fails.", NO_ARGS, _boom),
        ]
    )


async def test_unknown_tool_is_an_error_result(registry):
    outcome = await registry.execute("nope", {})
    assert outcome.error
    assert outcome.result == {"error": "Tool nope not found.", "error_kind": "unknown_tool"}


async def test_missing_required_argument(registry):
    outcome = await registry.execute("echo", {})
    assert outcome.error
    assert outcome.result["error_kind"] == "invalid_argument"
    assert "value" in outcome.result["error"]


async def test_handler_exception_is_contained(registry):
    outcome = await registry.execute("boom", {})
    assert outcome.error
    assert outcome.result["error"] == "kaboom"


async def test_unexpected_arguments_are_dropped(registry):
    outcome = await registry.execute("echo", {"value": "hi", "mood": "sunny"})
    assert not outcome.error
    assert outcome.result == {"value": "hi"}


def test_duplicate_names_rejected():
    spec = ToolSpec("boom", "x", NO_ARGS, _boom)
    with pytest.raises(ValueError):
        ToolRegistry([spec, spec])


def test_required_param_must_be_accepted():
    params = {"type": "object", "properties": {"other": {}}, "required": ["other"]}
    with pytest.raises(ValueError):
        ToolRegistry([ToolSpec("echo", "x", params, _echo)])


def test_chat_catalog(chat_tools):
    registry = chat_tools.registry()
    assert registry.names() == [d["name"] for d in CHAT_TOOL_DEFINITIONS]
    assert len(registry.names()) == 14
    definition = registry.definitions()[0]
    assert definition["type"] == "function"
    assert set(definition["function"]) == {"name", "description", "parameters"}


async def test_control_by_type(chat_tools, ledger, ac, fan):
    registry = chat_tools.registry()
    outcome = await registry.execute("find_and_control_appliances", {"new_state": "ON", "appliance_type": "Fan"})
    assert outcome.result["success"]
    assert ledger.get(fan.uid).is_on
    assert not ledger.get(ac.uid).is_on


async def test_control_with_no_match(chat_tools, ac):
    outcome = await chat_tools.registry().execute(
        "find_and_control_appliances", {"new_state": "on", "appliance_names": ["garage door"]}
    )
    assert outcome.error
    assert outcome.result["error_kind"] == "not_found"


def test_control_effects(chat_tools, ac, fan):
    effects = chat_tools.registry().effects(
        "find_and_control_appliances", {"new_state": "off", "appliance_names": ["all"]}
    )
    assert sorted(effects) == sorted([(ac.uid, "off"), (fan.uid, "off")])


async def test_cost_tool(chat_tools):
    registry = chat_tools.registry()
    assert (await registry.execute("calculate_usage_cost", {"units_kwh": 250})).result["total_cost"] == 1175.0
    assert (await registry.execute("calculate_usage_cost", {"units_kwh": 0})).result["total_cost"] == 0.0


async def test_manage_routines_creates_and_skips(chat_tools, routines, ac):
    outcome = await chat_tools.registry().execute(
        "manage_routines",
        {
            "routines_to_create": [
                {"name": "Morning cool", "appliance_name": "living room", "command": "turnOn", "time": "07:00", "days": ["daily"]},
                {"name": "Bad time", "appliance_name": "living room", "command": "turnOn", "time": "7am", "days": ["Monday"]},
                {"name": "No such", "appliance_name": "sauna", "command": "turnOn", "time": "08:00", "days": ["Monday"]},
            ]
        },
    )

    assert outcome.result["created"] == ["Morning cool"]
    assert [s["name"] for s in outcome.result["skipped"]] == ["Bad time", "No such"]
    created = routines.find_by_name("Morning cool")
    assert created.created_by == CreatedBy.AI
    assert created.schedule.days == list(WEEKDAYS)
    assert created.actions == [RoutineAction(ac.uid, "turnOn")]


async def test_mode_change_clears_only_assistant_routines(chat_tools, routines, modes, ac):
    for rid, creator in [("u", CreatedBy.USER), ("a", CreatedBy.AI), ("x", CreatedBy.AUTONOMOUS_AI)]:
        routines.add(Routine(rid, rid, Schedule("07:00", ["Monday"]), [RoutineAction(ac.uid, "turnOn")], creator))

    outcome = await chat_tools.registry().execute("set_power_saving_mode", {"mode": "power-saving"})

    assert outcome.result["success"]
    assert modes.get() == Mode.POWER_SAVING
    assert sorted(r.id for r in routines.all()) == ["u", "x"]
    assert "usage_logs" in outcome.result["analysis_data"]


async def test_invalid_mode(chat_tools, modes):
    outcome = await chat_tools.registry().execute("set_power_saving_mode", {"mode": "turbo"})
    assert outcome.error
    assert modes.get() == Mode.BALANCED


async def test_modify_details_ignores_state(chat_tools, ledger, ac):
    outcome = await chat_tools.registry().execute(
        "modify_appliance_details", {"appliance_name": "Living Room AC", "updates": {"priority_level": 2, "state": "on"}}
    )
    assert outcome.result["success"]
    stored = ledger.get(ac.uid)
    assert stored.priority_level == 2
    assert not stored.is_on


async def test_weather_without_key(chat_tools):
    outcome = await chat_tools.registry().execute("get_weather_data", {})
    assert outcome.error
    assert outcome.result["error_kind"] == "upstream_failure"


async def test_read_usage_logs_enriches_names(chat_tools, ledger, clock, ac):
    ledger.set_state(ac.uid, "on")
    clock.advance(hours=1)
    ledger.set_state(ac.uid, "off")

    outcome = await chat_tools.registry().execute("read_usage_logs", {"limit": 10})

    assert outcome.result["count"] == 1
    assert outcome.result["usage_logs"][0]["appliance_name"] == "Living Room AC"
