"""Brain: the tool-calling orchestration loop and the chat agent on top of it.

One turn moves through ``AwaitingModel -> ExecutingTools -> AwaitingModel ...
-> Done``. Each model response either ends the turn (no tool calls) or
carries a batch of tool calls. The batch is executed concurrently and its
results are fed back in request order as one batch.

A turn is bounded four ways: rounds, total tool calls, a per-call timeout on
every model round trip and tool execution, and an overall deadline. An
optional ``asyncio.Event`` cancels the turn at any await. Nothing raised
inside a turn escapes it: failures become ``{error}`` tool results or a
user-facing apology.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, TypeVar
from zoneinfo import ZoneInfo

from ecosync.chat_history import ChatHistory
from ecosync.config import EcoSyncSettings
from ecosync.errors import ErrorKind, StorageError, error_result
from ecosync.household import ModeStore
from ecosync.ledger import Clock, utc_now
from ecosync.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition
from ecosync.models import ChatEntry, ToolCallRecord
from ecosync.prompts import SUMMARY_REQUEST, build_chat_system_prompt
from ecosync.tools import ToolRegistry
from shared.log import get_logger, log_context
from shared.retry import async_retry

logger = get_logger("brain")

T = TypeVar("T")

RESET_ACK = "Okay, I've reset our conversation. How can I help?"
MODEL_FAILURE_TEXT = "Sorry, I couldn't reach the AI model just now. Please try again."
DEADLINE_TEXT = "Sorry, that took too long to work out. Please try a simpler request."
CANCELLED_TEXT = "Request cancelled."
EMPTY_TEXT = "I don't have a response for that."


class TurnCancelled(Exception):
    """The caller's cancellation event fired mid-turn."""


@dataclass
class TurnResult:
    text: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    rounds: int = 0
    completed: bool = True
    error_kind: ErrorKind | None = None


class OrchestrationLoop:
    """Model <-> tool loop over one ``ToolRegistry``."""

    def __init__(
        self,
        llm: LLMProvider,
        registry: ToolRegistry,
        settings: EcoSyncSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._settings = settings
        self._clock = clock

    @property
    def tools(self) -> list[ToolDefinition]:
        return self._registry.definitions()

    async def run(self, messages: list[Message], cancel: asyncio.Event | None = None) -> TurnResult:
        """Drive one turn. ``messages`` is extended in place with the exchange."""
        records: list[ToolCallRecord] = []
        try:
            return await asyncio.wait_for(
                self._loop(messages, records, cancel),
                timeout=self._settings.turn_deadline_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "turn_deadline_exceeded",
                deadline_s=self._settings.turn_deadline_seconds,
                tool_calls=len(records),
            )
            return TurnResult(DEADLINE_TEXT, records, completed=False, error_kind=ErrorKind.UPSTREAM_FAILURE)
        except TurnCancelled:
            logger.info("turn_cancelled", tool_calls=len(records))
            return TurnResult(CANCELLED_TEXT, records, completed=False)

    async def _loop(
        self,
        messages: list[Message],
        records: list[ToolCallRecord],
        cancel: asyncio.Event | None,
    ) -> TurnResult:
        max_rounds = self._settings.llm_max_tool_rounds
        calls_left = self._settings.llm_max_tool_calls
        tools = self.tools

        for round_num in range(max_rounds):
            response = await self._call_model(messages, tools, cancel, round_num)
            if response is None:
                return TurnResult(
                    MODEL_FAILURE_TEXT,
                    records,
                    round_num + 1,
                    completed=False,
                    error_kind=ErrorKind.UPSTREAM_FAILURE,
                )

            if not response.has_tool_calls:
                return TurnResult(response.content or EMPTY_TEXT, records, round_num + 1)

            messages.append(Message.tool_batch(response.content, response.tool_calls))
            logger.info("tool_batch", round=round_num, tools=response.tool_names)

            batch = await self._execute_batch(response.tool_calls, calls_left, cancel)
            calls_left -= sum(1 for _, executed in batch if executed)
            for tc, (record, _) in zip(response.tool_calls, batch):
                records.append(record)
                messages.append(Message.tool_result(tc, record.response))

            if calls_left <= 0:
                logger.warning("tool_call_budget_exhausted", round=round_num)
                break

        # Out of rounds or tool calls: one last request without tools forces text
        messages.append(Message(role="user", content=SUMMARY_REQUEST))
        final = await self._call_model(messages, None, cancel, max_rounds)
        if final is None:
            return TurnResult(
                MODEL_FAILURE_TEXT,
                records,
                max_rounds + 1,
                completed=False,
                error_kind=ErrorKind.UPSTREAM_FAILURE,
            )
        return TurnResult(final.content or EMPTY_TEXT, records, max_rounds + 1)

    # ------------------------------------------------------------------
    # Model and tool calls
    # ------------------------------------------------------------------

    async def ask(self, messages: list[Message]) -> LLMResponse | None:
        """One tool-less round trip. None when the model could not be reached."""
        return await self._call_model(messages, None, None, 0)

    async def _call_model(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        cancel: asyncio.Event | None,
        round_num: int,
    ) -> LLMResponse | None:
        async def attempt() -> LLMResponse:
            return await asyncio.wait_for(
                self._llm.chat(messages, tools=tools),
                timeout=self._settings.llm_call_timeout_seconds,
            )

        retried = async_retry(max_retries=self._settings.llm_max_retries, base_delay=1.0)(attempt)
        try:
            return await self._guard(retried(), cancel)
        except TurnCancelled:
            raise
        except Exception:
            logger.exception("llm_chat_error", round=round_num)
            return None

    async def _execute_batch(
        self,
        calls: list[ToolCall],
        calls_left: int,
        cancel: asyncio.Event | None,
    ) -> list[tuple[ToolCallRecord, bool]]:
        """Run one batch concurrently. Returns ``(record, executed)`` in request order."""
        conflicting = self._conflicting(calls)
        allowed: set[int] = set()
        for i in range(len(calls)):
            if i not in conflicting and len(allowed) < max(calls_left, 0):
                allowed.add(i)

        async def run_one(index: int, call: ToolCall) -> tuple[ToolCallRecord, bool]:
            started = self._clock()
            if index in conflicting:
                result = error_result(
                    f"Rejected {call.name}: the same batch asks for opposite states of one "
                    "appliance. Decide on one state and try again.",
                    ErrorKind.CONFLICT,
                )
                return self._record(call, result, 0, started, error=True), False
            if index not in allowed:
                result = error_result(
                    "Tool-call budget for this turn is exhausted.", ErrorKind.CONFLICT
                )
                return self._record(call, result, 0, started, error=True), False
            t0 = time.monotonic()
            try:
                outcome = await asyncio.wait_for(
                    self._registry.execute(call.name, call.arguments),
                    timeout=self._settings.tool_call_timeout_seconds,
                )
            except asyncio.TimeoutError:
                exec_ms = int((time.monotonic() - t0) * 1000)
                logger.warning("tool_timeout", tool=call.name, exec_ms=exec_ms)
                result = error_result(f"Tool {call.name} timed out.", ErrorKind.UPSTREAM_FAILURE)
                return self._record(call, result, exec_ms, started, error=True), True
            return self._record(call, outcome.result, outcome.exec_ms, started, outcome.error), True

        return await self._guard(
            asyncio.gather(*(run_one(i, call) for i, call in enumerate(calls))),
            cancel,
        )

    def _conflicting(self, calls: list[ToolCall]) -> set[int]:
        """Indexes of calls that set one appliance to opposite states in this batch."""
        states: dict[str, set[str]] = {}
        effects: list[list[tuple[str, str]]] = []
        for call in calls:
            call_effects = self._registry.effects(call.name, call.arguments)
            effects.append(call_effects)
            for uid, state in call_effects:
                states.setdefault(uid, set()).add(state)

        contested = {uid for uid, seen in states.items() if len(seen) > 1}
        if not contested:
            return set()
        rejected = {i for i, call_effects in enumerate(effects) if any(uid in contested for uid, _ in call_effects)}
        logger.warning(
            "conflicting_tool_batch",
            appliances=sorted(contested),
            rejected=[calls[i].name for i in sorted(rejected)],
        )
        return rejected

    @staticmethod
    def _record(
        call: ToolCall,
        result: Any,
        exec_ms: int,
        started: datetime,
        error: bool,
    ) -> ToolCallRecord:
        return ToolCallRecord(
            tool_name=call.name,
            arguments=call.arguments,
            response=result,
            exec_ms=exec_ms,
            timestamp=started,
            error=error,
        )

    @staticmethod
    async def _guard(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
        """Await ``awaitable`` unless ``cancel`` fires first."""
        if cancel is None:
            return await awaitable
        if cancel.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            elif isinstance(awaitable, asyncio.Future):
                awaitable.cancel()
            raise TurnCancelled()

        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if work in done:
            return work.result()
        work.cancel()
        raise TurnCancelled()


class Brain:
    """Chat agent: prompt assembly, history, reset phrase and persistence."""

    def __init__(
        self,
        llm: LLMProvider,
        registry: ToolRegistry,
        chat_history: ChatHistory,
        modes: ModeStore,
        settings: EcoSyncSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._history = chat_history
        self._modes = modes
        self._settings = settings
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self.loop = OrchestrationLoop(llm, registry, settings, clock)

    def _is_reset(self, prompt: str) -> bool:
        return self._settings.reset_phrase.lower() in prompt.lower()

    def _system_message(self) -> Message:
        # Mode is re-read every turn so a mode switch applies immediately
        mode = self._modes.get()
        now = self._clock().astimezone(self._tz)
        return Message(role="system", content=build_chat_system_prompt(mode, now))

    async def process_message(
        self,
        user_message: str,
        session_id: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Run one chat turn and return the text for the user."""
        session_id = session_id or uuid.uuid4().hex[:12]

        if self._is_reset(user_message):
            self._history.clear()
            logger.info("conversation_reset", session_id=session_id)
            return RESET_ACK

        history = self._history.to_messages(self._settings.chat_history_window)
        messages = [self._system_message(), *history, Message(role="user", content=user_message)]

        with log_context(session_id=session_id):
            logger.info("processing_message", msg_len=len(user_message), history_len=len(history))
            result = await self.loop.run(messages, cancel)

            if result.completed:
                self._persist(user_message, result, session_id)
            logger.info(
                "turn_finished",
                rounds=result.rounds,
                tool_calls=len(result.tool_calls),
                completed=result.completed,
            )
        return result.text

    async def run_background(self, prompt: str, cancel: asyncio.Event | None = None) -> TurnResult:
        """A turn nobody is waiting on (anomaly sweep): no history in or out."""
        messages = [self._system_message(), Message(role="user", content=prompt)]
        return await self.loop.run(messages, cancel)

    async def complete(self, system: str, prompt: str) -> str | None:
        """Single tool-less request, used for short generated text."""
        messages = [Message(role="system", content=system), Message(role="user", content=prompt)]
        response = await self.loop.ask(messages)
        return response.content if response else None

    def _persist(self, user_message: str, result: TurnResult, session_id: str) -> None:
        entry = ChatEntry(
            timestamp=self._clock(),
            user_message=user_message,
            ai_response=result.text,
            tool_calls=result.tool_calls,
            session_id=session_id,
        )
        try:
            self._history.add(entry)
        except StorageError:
            logger.exception("chat_history_save_failed", session_id=session_id)
