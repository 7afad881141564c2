"""Google Gemini provider with function calling (google-genai SDK)."""

from __future__ import annotations

import json
from typing import Any

from google import genai
from google.genai import types

from ecosync.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition


class GeminiProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        system_instruction = None
        conversation: list[Message] = []
        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
            else:
                conversation.append(msg)

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self._temperature,
            max_output_tokens=self._max_tokens,
            tools=self._convert_tools(tools) if tools else None,
            # The orchestration loop executes tools itself
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=self._build_contents(conversation),
            config=config,
        )
        return self._parse_response(response)

    # ------------------------------------------------------------------
    # Internal conversions
    # ------------------------------------------------------------------

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[types.Tool]:
        declarations: list[types.FunctionDeclaration] = []
        for tool in tools:
            func = tool.get("function", tool)
            params = func.get("parameters")
            # Gemini rejects an object schema without properties
            if params and params.get("properties"):
                parameters = self._convert_schema(params)
            else:
                parameters = None
            declarations.append(
                types.FunctionDeclaration(
                    name=func["name"],
                    description=func.get("description", ""),
                    parameters=parameters,
                )
            )
        return [types.Tool(function_declarations=declarations)]

    def _convert_schema(self, schema: dict[str, Any]) -> dict[str, Any]:
        """Recursively map JSON Schema onto Gemini's Schema fields."""
        result: dict[str, Any] = {}
        if "type" in schema:
            result["type"] = str(schema["type"]).upper()
        for key in ("description", "enum", "required"):
            if key in schema:
                result[key] = schema[key]
        if "properties" in schema:
            result["properties"] = {
                k: self._convert_schema(v) for k, v in schema["properties"].items()
            }
        if "items" in schema:
            result["items"] = self._convert_schema(schema["items"])
        return result

    def _build_contents(self, messages: list[Message]) -> list[types.Content]:
        """Convert unified messages; consecutive tool results share one turn."""
        contents: list[types.Content] = []
        pending_responses: list[types.Part] = []

        def flush() -> None:
            if pending_responses:
                contents.append(types.Content(role="user", parts=list(pending_responses)))
                pending_responses.clear()

        for msg in messages:
            if msg.role == "tool":
                try:
                    data = json.loads(msg.content) if msg.content else {}
                except (json.JSONDecodeError, TypeError):
                    data = {"result": msg.content}
                if not isinstance(data, dict):
                    data = {"result": data}
                pending_responses.append(
                    types.Part.from_function_response(name=msg.name or "unknown", response=data)
                )
                continue

            flush()
            if msg.role == "user":
                contents.append(types.Content(role="user", parts=[types.Part(text=msg.content or "")]))
            elif msg.role == "assistant":
                parts: list[types.Part] = []
                if msg.content:
                    parts.append(types.Part(text=msg.content))
                for tc in msg.tool_calls or []:
                    parts.append(types.Part.from_function_call(name=tc.name, args=tc.arguments))
                if parts:
                    contents.append(types.Content(role="model", parts=parts))

        flush()
        return contents

    def _parse_response(self, response: Any) -> LLMResponse:
        tool_calls: list[ToolCall] = []
        text_parts: list[str] = []

        candidates = response.candidates or []
        if not candidates or candidates[0].content is None:
            return LLMResponse(content=None)

        for part in candidates[0].content.parts or []:
            if part.function_call:
                fc = part.function_call
                tool_calls.append(ToolCall.from_wire(fc.id, fc.name, fc.args))
            elif part.text:
                text_parts.append(part.text)

        return LLMResponse(
            content="\n".join(text_parts) if text_parts else None,
            tool_calls=tool_calls,
        )
