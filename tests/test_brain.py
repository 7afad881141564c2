from __future__ import annotations

import asyncio
import json

from conftest import HangingLLM, ScriptedLLM, calls, text, tool_call

from ecosync.brain import CANCELLED_TEXT, DEADLINE_TEXT, MODEL_FAILURE_TEXT, RESET_ACK, OrchestrationLoop
from ecosync.llm.base import Message
from ecosync.models import ChatEntry, Mode
from ecosync.prompts import SUMMARY_REQUEST
from ecosync.tools import ToolRegistry, ToolSpec


async def test_plain_answer_is_one_round(make_brain, chat_history):
    llm = ScriptedLLM([text("Hello!")])
    reply = await make_brain(llm).process_message("hi", session_id="s1")

    assert reply == "Hello!"
    assert len(llm.calls) == 1
    assert llm.calls[0].tools
    [entry] = chat_history.entries()
    assert (entry.user_message, entry.ai_response, entry.tool_calls, entry.session_id) == ("hi", "Hello!", [], "s1")


async def test_unknown_tool_result_reaches_next_round(make_brain, chat_history):
    llm = ScriptedLLM([calls(tool_call("launch_rocket")), text("I can't do that.")])
    reply = await make_brain(llm).process_message("launch")

    assert reply == "I can't do that."
    tool_msg = llm.calls[1].messages[-1]
    assert tool_msg.role == "tool"
    assert json.loads(tool_msg.content)["error"] == "Tool launch_rocket not found."
    [record] = chat_history.entries()[0].tool_calls
    assert record.tool_name == "launch_rocket"
    assert record.error


async def test_tool_results_keep_request_order(make_brain, ac):
    llm = ScriptedLLM(
        [
            calls(
                tool_call("check_appliance_maintenance", "first"),
                tool_call("get_user_and_appliances_data", "second"),
                tool_call("detect_anomalies", "third"),
            ),
            text("ok"),
        ]
    )
    await make_brain(llm).process_message("status?")

    tool_msgs = [m for m in llm.calls[1].messages if m.role == "tool"]
    assert [m.tool_call_id for m in tool_msgs] == ["first", "second", "third"]
    assert [m.name for m in tool_msgs] == [
        "check_appliance_maintenance",
        "get_user_and_appliances_data",
        "detect_anomalies",
    ]


async def test_reset_phrase_skips_the_model(make_brain, chat_history, clock):
    chat_history.add(ChatEntry(clock.now, "old", "older"))
    llm = ScriptedLLM()

    reply = await make_brain(llm).process_message("Please RESET conversation now")

    assert reply == RESET_ACK
    assert llm.calls == []
    assert chat_history.entries() == []


async def test_history_and_mode_shape_the_prompt(make_brain, chat_history, modes, clock):
    chat_history.add(ChatEntry(clock.now, "is the fan on?", "No, it is off."))
    modes.set(Mode.EXTREME)
    llm = ScriptedLLM([text("sure")])

    await make_brain(llm).process_message("turn it on")

    messages = llm.calls[0].messages
    assert messages[0].role == "system"
    assert "Extreme sustainability" in messages[0].content
    assert [(m.role, m.content) for m in messages[1:]] == [
        ("user", "is the fan on?"),
        ("assistant", "No, it is off."),
        ("user", "turn it on"),
    ]


async def test_round_limit_forces_summary(make_brain):
    llm = ScriptedLLM(
        [
            calls(tool_call("detect_anomalies")),
            calls(tool_call("detect_anomalies")),
            text("Here is what I found."),
        ]
    )
    reply = await make_brain(llm, llm_max_tool_rounds=2).process_message("check everything")

    assert reply == "Here is what I found."
    assert len(llm.calls) == 3
    final = llm.calls[-1]
    assert final.tools is None
    assert final.messages[-1].content == SUMMARY_REQUEST


async def test_tool_call_budget(make_brain, chat_history):
    llm = ScriptedLLM(
        [
            calls(tool_call("detect_anomalies", "a"), tool_call("check_appliance_maintenance", "b")),
            text("partial answer"),
        ]
    )
    reply = await make_brain(llm, llm_max_tool_calls=1).process_message("check")

    assert reply == "partial answer"
    first, second = chat_history.entries()[0].tool_calls
    assert not first.error
    assert second.error
    assert second.response["error_kind"] == "conflict"
    assert llm.calls[-1].tools is None


async def test_conflicting_batch_is_not_executed(make_brain, chat_history, ledger, ac):
    llm = ScriptedLLM(
        [
            calls(
                tool_call("find_and_control_appliances", "on", new_state="on", appliance_names=["living room"]),
                tool_call("find_and_control_appliances", "off", new_state="off", appliance_names=["all"]),
                tool_call("detect_anomalies", "scan"),
            ),
            text("Which one did you mean?"),
        ]
    )
    await make_brain(llm).process_message("turn the AC on and everything off")

    assert not ledger.get(ac.uid).is_on
    on_call, off_call, scan = chat_history.entries()[0].tool_calls
    assert on_call.error and on_call.response["error_kind"] == "conflict"
    assert off_call.error and off_call.response["error_kind"] == "conflict"
    assert not scan.error


async def test_control_call_changes_state(make_brain, ledger, usage_log, clock, ac):
    ledger.set_state(ac.uid, "on")
    clock.advance(hours=1)
    llm = ScriptedLLM(
        [
            calls(tool_call("find_and_control_appliances", new_state="off", appliance_names=["Living Room AC"])),
            text("Done, the AC is off."),
        ]
    )
    await make_brain(llm).process_message("turn off the AC")

    assert not ledger.get(ac.uid).is_on
    assert [e.trigger.value for e in usage_log.entries()] == ["ai"]


async def test_model_failure_becomes_apology(make_brain, chat_history):
    llm = ScriptedLLM([RuntimeError("503 from upstream")])
    assert await make_brain(llm).process_message("hi") == MODEL_FAILURE_TEXT
    assert chat_history.entries() == []


async def test_summary_failure_is_not_saved(make_brain, chat_history):
    llm = ScriptedLLM([calls(tool_call("detect_anomalies")), RuntimeError("503 from upstream")])
    reply = await make_brain(llm, llm_max_tool_rounds=1).process_message("check")

    assert reply == MODEL_FAILURE_TEXT
    assert chat_history.entries() == []


async def test_cancel_mid_turn(make_brain, chat_history):
    llm = HangingLLM()
    cancel = asyncio.Event()
    task = asyncio.create_task(make_brain(llm).process_message("hi", cancel=cancel))

    await llm.started.wait()
    cancel.set()

    assert await task == CANCELLED_TEXT
    assert chat_history.entries() == []


async def test_turn_deadline(make_brain, chat_history):
    reply = await make_brain(HangingLLM(), turn_deadline_seconds=0.05).process_message("hi")
    assert reply == DEADLINE_TEXT
    assert chat_history.entries() == []


async def test_background_turn_leaves_no_history(make_brain, chat_history):
    llm = ScriptedLLM([calls(tool_call("detect_anomalies")), text("All normal.")])
    result = await make_brain(llm).run_background("sweep")

    assert result.text == "All normal."
    assert len(result.tool_calls) == 1
    assert chat_history.entries() == []


async def test_single_name_strings_do_not_conflict(make_brain, chat_history, ledger, ac, fan):
    llm = ScriptedLLM(
        [
            calls(
                tool_call("find_and_control_appliances", "fan", new_state="on", appliance_names="Ceiling Fan"),
                tool_call("find_and_control_appliances", "ac", new_state="off", appliance_names="Living Room AC"),
            ),
            text("Fan on, AC off."),
        ]
    )
    await make_brain(llm).process_message("fan on, AC off")

    assert ledger.get(fan.uid).is_on
    assert not ledger.get(ac.uid).is_on
    fan_call, ac_call = chat_history.entries()[0].tool_calls
    assert not fan_call.error
    assert not ac_call.error


async def _stall() -> dict:
    await asyncio.sleep(5)
    return {}


async def test_tool_timeout_records_elapsed_time(settings, clock):
    registry = ToolRegistry([ToolSpec("stall", "Never finishes.", {"type": "object", "properties": {}}, _stall)])
    loop = OrchestrationLoop(
        ScriptedLLM([calls(tool_call("stall")), text("gave up")]),
        registry,
        settings.model_copy(update={"tool_call_timeout_seconds": 0.05}),
        clock,
    )
    result = await loop.run([Message(role="user", content="go")])

    [record] = result.tool_calls
    assert record.error
    assert record.response["error_kind"] == "upstream_failure"
    assert record.exec_ms >= 40
