from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from ecosync.brain import Brain
from ecosync.chat_history import ChatHistory
from ecosync.config import EcoSyncSettings
from ecosync.household import HouseholdProfile, ModeStore, ProfileStore
from ecosync.ledger import ApplianceLedger
from ecosync.llm.base import LLMProvider, LLMResponse, Message, ToolCall, ToolDefinition
from ecosync.routines import RoutineStore
from ecosync.tools import ChatTools
from ecosync.usage_log import UsageLog

# Monday
START = datetime(2024, 3, 11, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class RecordedCall:
    messages: list[Message]
    tools: list[ToolDefinition] | None


class ScriptedLLM(LLMProvider):
    """Replays a fixed list of responses. Exceptions in the script are raised."""

    def __init__(self, script: list[LLMResponse | Exception] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[RecordedCall] = []

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        self.calls.append(RecordedCall(list(messages), tools))
        if not self.script:
            return LLMResponse(content="done")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class HangingLLM(LLMProvider):
    """Never answers until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def tool_call(name: str, call_id: str = "c1", **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def calls(*tool_calls: ToolCall) -> LLMResponse:
    return LLMResponse(tool_calls=list(tool_calls))


def text(content: str) -> LLMResponse:
    return LLMResponse(content=content)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> EcoSyncSettings:
    return EcoSyncSettings(
        _env_file=None,
        data_dir=str(tmp_path),
        timezone="UTC",
        llm_max_retries=0,
        llm_call_timeout_seconds=5,
        tool_call_timeout_seconds=5,
        turn_deadline_seconds=10,
    )


@pytest.fixture
def usage_log(tmp_path) -> UsageLog:
    return UsageLog(tmp_path / "usage_logs.json", retention=1000)


@pytest.fixture
def routines(tmp_path) -> RoutineStore:
    return RoutineStore(tmp_path / "routines.json")


@pytest.fixture
def ledger(tmp_path, usage_log, routines, clock) -> ApplianceLedger:
    return ApplianceLedger(tmp_path / "appliances.json", usage_log, routines, clock)


@pytest.fixture
def profiles(tmp_path) -> ProfileStore:
    return ProfileStore(
        tmp_path / "users.json",
        HouseholdProfile(uid="household", name="Test Home", monthly_budget=2000.0, location="Pune", country_code="in"),
    )


@pytest.fixture
def modes(tmp_path) -> ModeStore:
    return ModeStore(tmp_path / "mode.json")


@pytest.fixture
def chat_history(tmp_path) -> ChatHistory:
    return ChatHistory(tmp_path / "chat_history.json", retention=1000)


@pytest.fixture
def chat_tools(ledger, usage_log, routines, profiles, modes, settings) -> ChatTools:
    return ChatTools(ledger, usage_log, routines, profiles, modes, settings)


@pytest.fixture
def make_brain(chat_tools, chat_history, modes, settings, clock):
    def _make(llm: LLMProvider, **overrides: Any) -> Brain:
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return Brain(llm, chat_tools.registry(), chat_history, modes, cfg, clock)

    return _make


@pytest.fixture
def ac(ledger):
    return ledger.add_appliance("Living Room AC", "Air Conditioner", 1.0).appliance


@pytest.fixture
def fan(ledger):
    return ledger.add_appliance("Ceiling Fan", "Fan", 0.075).appliance
