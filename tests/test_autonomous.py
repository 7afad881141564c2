from __future__ import annotations

import pytest
from conftest import ScriptedLLM, calls, text, tool_call

from ecosync.autonomous import AutonomousAgent, AutonomousLog
from ecosync.autonomous_tools import AUTONOMOUS_TOOL_DEFINITIONS, AutonomousTools
from ecosync.models import ChatEntry, CreatedBy, Routine, RoutineAction, Schedule, Trigger


@pytest.fixture
def tools(ledger, usage_log, routines, profiles, chat_history, settings):
    return AutonomousTools(ledger, usage_log, routines, profiles, chat_history, settings)


@pytest.fixture
def registry(tools):
    return tools.registry()


@pytest.fixture
def autonomous_log(tmp_path):
    return AutonomousLog(tmp_path / "autonomous_log.json", retention=500)


def night_routine(appliance_id, name="Night cooling"):
    return {
        "name": name,
        "schedule": {"time": "22:00", "days": ["Monday", "Tuesday"]},
        "actions": [{"appliance_id": appliance_id, "command": "turnOff"}],
        "reasoning": "The AC is usually left on overnight.",
    }


def test_catalog(registry):
    assert registry.names() == [d["name"] for d in AUTONOMOUS_TOOL_DEFINITIONS]


async def test_creates_routine_with_reasoning(registry, routines, clock, ac):
    outcome = await registry.execute("create_autonomous_routine", night_routine(ac.uid))

    assert outcome.result["success"]
    [routine] = routines.all()
    assert routine.created_by == CreatedBy.AUTONOMOUS_AI
    assert routine.reasoning == "The AC is usually left on overnight."
    assert routine.created_at == clock.now
    assert routine.actions == [RoutineAction(ac.uid, "turnOff")]


async def test_similar_name_is_rejected(registry, routines, ac):
    await registry.execute("create_autonomous_routine", night_routine(ac.uid, "Night cooling"))
    outcome = await registry.execute("create_autonomous_routine", night_routine(ac.uid, "cooling"))

    assert outcome.error
    assert outcome.result["existing_routine"]["name"] == "Night cooling"
    assert len(routines.all()) == 1


async def test_routine_for_unknown_appliance(registry, routines):
    outcome = await registry.execute("create_autonomous_routine", night_routine("GONE1"))
    assert outcome.result["error_kind"] == "not_found"
    assert routines.all() == []


async def test_control_goes_through_the_ledger(registry, ledger, usage_log, clock, ac):
    await registry.execute(
        "autonomous_appliance_control", {"appliance_id": ac.uid, "action": "turnOn", "reasoning": "pre-cool"}
    )
    clock.advance(minutes=90)
    outcome = await registry.execute(
        "autonomous_appliance_control", {"appliance_id": ac.uid, "action": "turnOff", "reasoning": "cool enough"}
    )

    assert outcome.result["success"]
    assert outcome.result["reasoning"] == "cool enough"
    [entry] = usage_log.entries()
    assert entry.trigger == Trigger.AUTONOMOUS_AI
    assert entry.energy_kwh == 1.5


async def test_control_rejects_unknown_action(registry, ledger, ac):
    outcome = await registry.execute(
        "autonomous_appliance_control", {"appliance_id": ac.uid, "action": "blink", "reasoning": "?"}
    )
    assert outcome.result["error_kind"] == "invalid_argument"
    assert not ledger.get(ac.uid).is_on


def test_control_effects(registry, ac):
    assert registry.effects("autonomous_appliance_control", {"appliance_id": ac.uid, "action": "turnOff"}) == [
        (ac.uid, "off")
    ]


async def test_energy_optimization_flags_heavy_consumers(registry, ledger, clock, ac, fan):
    ledger.set_state(ac.uid, "on")
    ledger.set_state(fan.uid, "on")
    clock.advance(hours=12)
    ledger.set_state(ac.uid, "off")
    ledger.set_state(fan.uid, "off")

    result = (await registry.execute("analyze_energy_optimization", {})).result

    assert result["energy_by_appliance"][ac.uid]["energy_kwh_30d"] == 12.0
    [opportunity] = result["optimization_opportunities"]
    assert opportunity["appliance"] == "Living Room AC"
    assert opportunity["potential_saving_kwh"] == 2.4
    assert result["top_consumers"][0]["name"] == "Living Room AC"


async def test_modify_keeps_routine_id(registry, routines, ac):
    routines.add(Routine("r1", "Evening", Schedule("19:00", ["Friday"]), [RoutineAction(ac.uid, "turnOn")]))

    outcome = await registry.execute(
        "manage_existing_routines",
        {"action": "modify", "routine_id": "r1", "modifications": {"id": "zzz", "name": "Late evening", "schedule": {"time": "21:00"}}},
    )

    assert outcome.result["success"]
    routine = routines.get("r1")
    assert routine.name == "Late evening"
    assert routine.schedule.to_dict() == {"time": "21:00", "days": ["Friday"]}
    assert routines.get("zzz") is None


async def test_delete_and_list_routines(registry, routines, ac):
    routines.add(Routine("r1", "Evening", Schedule("19:00", ["Friday"]), [RoutineAction(ac.uid, "turnOn")]))
    listed = (await registry.execute("manage_existing_routines", {"action": "list"})).result
    assert [r["id"] for r in listed["routines"]] == ["r1"]

    missing = await registry.execute("manage_existing_routines", {"action": "delete"})
    assert missing.result["error_kind"] == "invalid_argument"

    deleted = await registry.execute("manage_existing_routines", {"action": "delete", "routine_id": "r1"})
    assert deleted.result["success"]
    assert routines.all() == []


async def test_user_patterns(registry, chat_history, clock, ac):
    for message in ["How do I save on my bill?", "Energy cost is high", "save power please", "it's hot in here, living room AC on"]:
        chat_history.add(ChatEntry(clock.now, message, "ok"))
        clock.advance(minutes=5)

    result = (await registry.execute("analyze_user_patterns", {})).result

    patterns = result["patterns"]
    assert result["total_chats_analyzed"] == 4
    assert patterns["energy_saving_interest"] == 3
    assert result["insights"]["energy_saving_interest_level"] == "medium"
    assert patterns["time_preferences"] == {"morning": 4}
    assert patterns["appliance_mentions"][ac.uid]["mentions"] == 1
    assert len(patterns["comfort_mentions"]) == 1


async def test_home_data_summarises_last_week(registry, ledger, clock, ac):
    ledger.set_state(ac.uid, "on")
    clock.advance(hours=2)
    ledger.set_state(ac.uid, "off")

    result = (await registry.execute("analyze_home_data", {})).result

    stats = result["appliance_stats"][ac.uid]
    assert stats["usage_hours_7d"] == 2.0
    assert stats["sessions_7d"] == 1
    assert result["last_7_days_logs"] == 1


async def test_agent_run_is_logged(registry, autonomous_log, settings, clock, ac):
    llm = ScriptedLLM([calls(tool_call("analyze_home_data")), text("Nothing to change today.")])
    agent = AutonomousAgent(llm, registry, autonomous_log, settings, clock)

    entry = await agent.run()

    assert entry.execution_id.startswith("auto_")
    assert entry.action == "autonomous_analysis"
    assert entry.result == "Nothing to change today."
    assert [tc.tool_name for tc in entry.tool_calls] == ["analyze_home_data"]
    assert [e.execution_id for e in autonomous_log.entries()] == [entry.execution_id]
    assert llm.calls[0].messages[0].role == "system"


async def test_failed_run_is_logged_too(registry, autonomous_log, settings, clock):
    agent = AutonomousAgent(ScriptedLLM([RuntimeError("quota exceeded")]), registry, autonomous_log, settings, clock)

    entry = await agent.run()

    assert entry.action == "autonomous_analysis_failed"
    stats = autonomous_log.stats()
    assert stats["total_runs"] == 1
    assert stats["failed_runs"] == 1
    assert autonomous_log.recent(5)[0].timestamp == clock.now
