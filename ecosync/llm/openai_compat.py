"""Chat Completions backend for OpenAI and for Ollama's ``/v1`` endpoint."""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI

from ecosync.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition


def to_chat_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Chat Completions payload. A tool batch keeps its call order."""
    payload: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            payload.append({"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content or ""})
        elif msg.role == "assistant" and msg.tool_calls:
            payload.append(
                {
                    "role": "assistant",
                    "content": msg.content,
                    "tool_calls": [_wire_call(tc) for tc in msg.tool_calls],
                }
            )
        else:
            payload.append({"role": msg.role, "content": msg.content or ""})
    return payload


def _wire_call(call: ToolCall) -> dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
    }


def from_completion(completion: Any) -> LLMResponse:
    if not completion.choices:
        return LLMResponse()
    message = completion.choices[0].message
    calls = [
        ToolCall.from_wire(tc.id, tc.function.name, tc.function.arguments)
        for tc in message.tool_calls or []
    ]
    return LLMResponse(content=message.content or None, tool_calls=calls)


class OpenAICompatProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        base_url: str | None = None,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or None)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": to_chat_messages(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        if tools:
            request["tools"] = tools
        completion = await self._client.chat.completions.create(**request)
        return from_completion(completion)

    async def close(self) -> None:
        await self._client.close()
