"""Autonomous agent: periodic unattended analysis runs over the home data."""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from ecosync.brain import OrchestrationLoop, TurnResult
from ecosync.config import EcoSyncSettings
from ecosync.errors import StorageError
from ecosync.ledger import Clock, utc_now
from ecosync.llm.base import LLMProvider, Message
from ecosync.models import AutonomousLogEntry
from ecosync.prompts import AUTONOMOUS_ANALYSIS_REQUEST, build_autonomous_system_prompt
from ecosync.store import JsonCollectionStore, Repository
from ecosync.tools import ToolRegistry
from shared.log import get_logger, log_context

logger = get_logger("autonomous")


class AutonomousLog:
    """Bounded log of autonomous runs."""

    def __init__(self, path: Path | str, retention: int = 500, max_retries: int = 3) -> None:
        self._store = JsonCollectionStore(path, retention=retention, max_retries=max_retries)
        self._repo: Repository[AutonomousLogEntry] = Repository(
            self._store, AutonomousLogEntry.from_dict, key="execution_id"
        )

    def add(self, entry: AutonomousLogEntry) -> None:
        self._repo.add(entry)

    def entries(self) -> list[AutonomousLogEntry]:
        return self._repo.all()

    def recent(self, count: int = 10) -> list[AutonomousLogEntry]:
        return self.entries()[-count:] if count > 0 else []

    def stats(self) -> dict[str, Any]:
        entries = self.entries()
        tools = Counter(tc.tool_name for e in entries for tc in e.tool_calls)
        return {
            "total_runs": len(entries),
            "failed_runs": sum(1 for e in entries if e.action == "autonomous_analysis_failed"),
            "total_tool_calls": sum(len(e.tool_calls) for e in entries),
            "most_used_tools": dict(tools.most_common()),
            "last_run": entries[-1].timestamp.isoformat() if entries else None,
        }


class AutonomousAgent:
    def __init__(
        self,
        llm: LLMProvider,
        registry: ToolRegistry,
        log: AutonomousLog,
        settings: EcoSyncSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._log = log
        self._clock = clock
        self._tz = ZoneInfo(settings.timezone)
        self.loop = OrchestrationLoop(llm, registry, settings, clock)

    async def run(self, cancel: asyncio.Event | None = None) -> AutonomousLogEntry:
        """One full analysis run. Always leaves an entry in the autonomous log."""
        execution_id = f"auto_{uuid.uuid4().hex[:12]}"
        started = self._clock()
        messages = [
            Message(role="system", content=build_autonomous_system_prompt(started.astimezone(self._tz))),
            Message(role="user", content=AUTONOMOUS_ANALYSIS_REQUEST),
        ]

        with log_context(execution_id=execution_id):
            logger.info("autonomous_run_started")
            try:
                result = await self.loop.run(messages, cancel)
            except Exception as exc:
                logger.exception("autonomous_run_failed")
                result = TurnResult(f"Error: {exc}", completed=False)

            action = "autonomous_analysis" if result.completed and result.error_kind is None else "autonomous_analysis_failed"
            entry = AutonomousLogEntry(
                timestamp=started,
                action=action,
                reasoning="Periodic autonomous analysis and optimization",
                tool_calls=result.tool_calls,
                result=result.text,
                execution_id=execution_id,
            )
            try:
                self._log.add(entry)
            except StorageError:
                logger.exception("autonomous_log_save_failed")

            logger.info(
                "autonomous_run_finished",
                action=action,
                rounds=result.rounds,
                tool_calls=len(result.tool_calls),
            )
        return entry
