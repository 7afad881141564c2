from __future__ import annotations

from ecosync.chat_history import ChatHistory
from ecosync.models import ChatEntry, ToolCallRecord


def entry(clock, user, reply, tools=()):
    records = [ToolCallRecord(name, {}, {"ok": True}, 3, clock.now) for name in tools]
    return ChatEntry(clock.now, user, reply, records, session_id="s")


def test_recent_and_context_messages(chat_history, clock):
    for i in range(4):
        chat_history.add(entry(clock, f"q{i}", f"a{i}"))
        clock.advance(minutes=1)

    assert [e.user_message for e in chat_history.recent(2)] == ["q2", "q3"]
    messages = chat_history.to_messages(max_entries=2)
    assert [(m.role, m.content) for m in messages] == [
        ("user", "q2"),
        ("assistant", "a2"),
        ("user", "q3"),
        ("assistant", "a3"),
    ]


def test_search_covers_messages_and_tools(chat_history, clock):
    chat_history.add(entry(clock, "Is the Fan on?", "Yes"))
    chat_history.add(entry(clock, "weather?", "Sunny", tools=["get_weather_data"]))

    assert [e.user_message for e in chat_history.search("fan")] == ["Is the Fan on?"]
    assert [e.user_message for e in chat_history.search("WEATHER_DATA")] == ["weather?"]


def test_stats(chat_history, clock):
    chat_history.add(entry(clock, "a", "12345", tools=["detect_anomalies", "detect_anomalies"]))
    clock.advance(days=2)
    chat_history.add(entry(clock, "b", "1", tools=["list_routines"]))

    stats = chat_history.stats()
    assert stats["total_chats"] == 2
    assert stats["total_tool_calls"] == 3
    assert stats["average_tool_calls_per_chat"] == 1.5
    assert stats["most_used_tools"] == {"detect_anomalies": 2, "list_routines": 1}
    assert stats["average_response_length"] == 3
    assert stats["conversation_span_days"] == 2


def test_empty_stats(chat_history):
    assert chat_history.stats()["total_chats"] == 0
    assert chat_history.export()["metadata"]["date_range"] is None


def test_retention(tmp_path, clock):
    history = ChatHistory(tmp_path / "h.json", retention=3)
    for i in range(5):
        history.add(entry(clock, str(i), "ok"))
        clock.advance(seconds=1)
    assert [e.user_message for e in history.entries()] == ["2", "3", "4"]


def test_tool_records_survive_a_round_trip(chat_history, clock):
    chat_history.add(entry(clock, "x", "y", tools=["list_routines"]))
    [record] = chat_history.entries()[0].tool_calls
    assert record.tool_name == "list_routines"
    assert record.response == {"ok": True}
    assert record.timestamp == clock.now


def test_clear(chat_history, clock):
    chat_history.add(entry(clock, "x", "y"))
    chat_history.clear()
    assert chat_history.entries() == []
    assert chat_history.export()["chat_history"] == []
