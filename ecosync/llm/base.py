"""Provider-neutral conversation types for the orchestration loop.

A tool round on the wire is always::

    assistant(tool_calls=[c1, c2, ...])
    tool(c1 result), tool(c2 result), ...

Tool results follow their assistant message in the same order as its
``tool_calls``, one result per call, rejected calls included. Providers
translate that block as a unit: OpenAI keeps one ``tool`` message per call,
Gemini folds the results into a single user turn.
"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

# OpenAI-style ``{"type": "function", "function": {...}}`` entry; the
# registry emits this form and each provider maps it to its own schema.
ToolDefinition = dict[str, Any]


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


def decode_arguments(raw: Any) -> dict[str, Any]:
    """Tool arguments as a dict. Malformed or non-object payloads become ``{}``."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes)) and raw:
        try:
            decoded = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]

    @classmethod
    def from_wire(cls, call_id: str | None, name: str | None, raw_arguments: Any) -> ToolCall:
        """Build from a provider payload. Some local models omit the call id."""
        return cls(id=call_id or new_call_id(), name=name or "", arguments=decode_arguments(raw_arguments))


@dataclass
class Message:
    role: str  # system | user | assistant | tool
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def tool_batch(cls, content: str | None, calls: list[ToolCall]) -> Message:
        return cls(role="assistant", content=content, tool_calls=list(calls))

    @classmethod
    def tool_result(cls, call: ToolCall, payload: Any) -> Message:
        """Result for ``call``. Payloads are JSON-encoded; datetimes become strings."""
        return cls(
            role="tool",
            content=json.dumps(payload, ensure_ascii=False, default=str),
            tool_call_id=call.id,
            name=call.name,
        )


@dataclass
class LLMResponse:
    """Final text, a tool batch, or both."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def tool_names(self) -> list[str]:
        return [tc.name for tc in self.tool_calls]


class LLMProvider(ABC):
    """One reasoning-engine backend.

    ``chat`` gets the whole conversation each round (system prompt first)
    and the tool catalog, or ``None`` for a text-only request such as the
    closing summary. Network and API errors propagate; the loop owns
    retries and timeouts.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse: ...

    async def close(self) -> None:
        """Release network clients."""
