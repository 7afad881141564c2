"""Bounded chat log that doubles as conversation context."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ecosync.llm.base import Message
from ecosync.models import ChatEntry
from ecosync.store import JsonCollectionStore, Repository
from shared.log import get_logger

logger = get_logger("chat-history")


class ChatHistory:
    def __init__(self, path: Path | str, retention: int = 1000, max_retries: int = 3) -> None:
        self._store = JsonCollectionStore(path, retention=retention, max_retries=max_retries)
        self._repo: Repository[ChatEntry] = Repository(self._store, ChatEntry.from_dict)

    def add(self, entry: ChatEntry) -> None:
        self._repo.add(entry)

    def entries(self) -> list[ChatEntry]:
        return self._repo.all()

    def recent(self, count: int = 10) -> list[ChatEntry]:
        if count <= 0:
            return []
        return self.entries()[-count:]

    def search(self, query: str) -> list[ChatEntry]:
        """Case-insensitive match on messages, responses and tool names."""
        needle = query.lower()
        return [
            entry
            for entry in self.entries()
            if needle in entry.user_message.lower()
            or needle in entry.ai_response.lower()
            or any(needle in tc.tool_name.lower() for tc in entry.tool_calls)
        ]

    def stats(self) -> dict[str, Any]:
        entries = self.entries()
        total_tool_calls = sum(len(e.tool_calls) for e in entries)
        tools = Counter(tc.tool_name for e in entries for tc in e.tool_calls)
        by_date = Counter(e.timestamp.date().isoformat() for e in entries)

        stats: dict[str, Any] = {
            "total_chats": len(entries),
            "total_tool_calls": total_tool_calls,
            "average_tool_calls_per_chat": 0.0,
            "most_used_tools": dict(tools.most_common()),
            "chats_by_date": dict(sorted(by_date.items())),
            "average_response_length": 0,
            "conversation_span_days": 0,
        }
        if entries:
            stats["average_tool_calls_per_chat"] = round(total_tool_calls / len(entries), 2)
            stats["average_response_length"] = round(
                sum(len(e.ai_response) for e in entries) / len(entries)
            )
            span = entries[-1].timestamp - entries[0].timestamp
            stats["conversation_span_days"] = round(span.total_seconds() / 86400)
        return stats

    def export(self) -> dict[str, Any]:
        entries = self.entries()
        return {
            "export_date": datetime.now(timezone.utc).isoformat(),
            "metadata": {
                "total_entries": len(entries),
                "date_range": {
                    "from": entries[0].timestamp.isoformat(),
                    "to": entries[-1].timestamp.isoformat(),
                }
                if entries
                else None,
                "statistics": self.stats(),
            },
            "chat_history": [e.to_dict() for e in entries],
        }

    def clear(self) -> None:
        self._store.clear()
        logger.info("chat_history_cleared")

    def to_messages(self, max_entries: int = 10) -> list[Message]:
        """Recent exchanges as alternating user/assistant messages."""
        messages: list[Message] = []
        for entry in self.recent(max_entries):
            messages.append(Message(role="user", content=entry.user_message))
            messages.append(Message(role="assistant", content=entry.ai_response))
        return messages
