"""EcoSync service: wiring, periodic jobs and the command line.

    ecosync run                 start the service and its timers
    ecosync chat "<message>"    one chat turn, printed to stdout
    ecosync autonomous          one autonomous analysis run
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ecosync.autonomous import AutonomousAgent, AutonomousLog
from ecosync.autonomous_tools import AutonomousTools
from ecosync.brain import Brain
from ecosync.chat_history import ChatHistory
from ecosync.config import EcoSyncSettings
from ecosync.dashboard import DashboardRefresher, refresh_suggestions
from ecosync.external import NewsClient, WeatherClient
from ecosync.household import HouseholdProfile, ModeStore, ProfileStore
from ecosync.ledger import ApplianceLedger, Clock, utc_now
from ecosync.llm import LLMProvider, create_provider
from ecosync.prompts import ANOMALY_SWEEP_PROMPT
from ecosync.routines import RoutineStore
from ecosync.safety import SafetyMonitor
from ecosync.scheduler import RoutineScheduler
from ecosync.tools import ChatTools
from ecosync.usage_log import UsageLog
from shared.service import BaseService


@dataclass
class Components:
    settings: EcoSyncSettings
    llm: LLMProvider
    usage_log: UsageLog
    routines: RoutineStore
    ledger: ApplianceLedger
    profiles: ProfileStore
    modes: ModeStore
    chat_history: ChatHistory
    autonomous_log: AutonomousLog
    weather: WeatherClient
    news: NewsClient
    brain: Brain
    autonomous: AutonomousAgent
    routine_scheduler: RoutineScheduler
    safety: SafetyMonitor
    dashboard: DashboardRefresher

    async def close(self) -> None:
        await self.weather.close()
        await self.news.close()
        await self.llm.close()


def build_components(
    settings: EcoSyncSettings,
    llm: LLMProvider | None = None,
    clock: Clock = utc_now,
) -> Components:
    """Create every store and agent over the JSON files in ``settings.data_dir``."""
    data = Path(settings.data_dir)
    data.mkdir(parents=True, exist_ok=True)
    retries = settings.store_max_retries
    llm = llm or create_provider(settings)

    usage_log = UsageLog(data / "usage_logs.json", settings.usage_log_retention, retries)
    routines = RoutineStore(data / "routines.json", retries)
    ledger = ApplianceLedger(data / "appliances.json", usage_log, routines, clock, retries)
    profiles = ProfileStore(
        data / "users.json",
        HouseholdProfile(
            uid="household",
            name=settings.default_user_name,
            monthly_budget=settings.default_monthly_budget,
            location=settings.default_location,
            country_code=settings.default_country_code,
        ),
        retries,
    )
    modes = ModeStore(data / "mode.json")
    chat_history = ChatHistory(data / "chat_history.json", settings.chat_history_retention, retries)
    autonomous_log = AutonomousLog(data / "autonomous_log.json", settings.autonomous_log_retention, retries)

    weather = WeatherClient(
        settings.weather_api_key,
        settings.weather_api_url,
        settings.external_timeout_seconds,
        settings.external_max_retries,
    )
    news = NewsClient(
        settings.news_api_key,
        settings.news_api_url,
        settings.external_timeout_seconds,
        settings.external_max_retries,
    )

    chat_tools = ChatTools(ledger, usage_log, routines, profiles, modes, settings, weather, news)
    auto_tools = AutonomousTools(ledger, usage_log, routines, profiles, chat_history, settings)

    return Components(
        settings=settings,
        llm=llm,
        usage_log=usage_log,
        routines=routines,
        ledger=ledger,
        profiles=profiles,
        modes=modes,
        chat_history=chat_history,
        autonomous_log=autonomous_log,
        weather=weather,
        news=news,
        brain=Brain(llm, chat_tools.registry(), chat_history, modes, settings, clock),
        autonomous=AutonomousAgent(llm, auto_tools.registry(), autonomous_log, settings, clock),
        routine_scheduler=RoutineScheduler(ledger, routines, settings.timezone, clock),
        safety=SafetyMonitor(ledger, settings.anomaly_threshold_hours),
        dashboard=DashboardRefresher(ledger, usage_log, routines, profiles, settings, clock),
    )


class EcoSyncService(BaseService):
    name = "ecosync"

    def __init__(self, settings: EcoSyncSettings | None = None) -> None:
        super().__init__(settings=settings or EcoSyncSettings())
        self.settings: EcoSyncSettings
        self.scheduler = AsyncIOScheduler(timezone=self.settings.timezone)
        self.components: Components | None = None

    async def run(self) -> None:
        self.components = build_components(self.settings)
        s = self.settings

        # Same-job overlap is prevented; different jobs may interleave
        jobs = [
            (self._routine_tick, {"seconds": s.routine_interval_seconds}, "routine_tick", True),
            (self._safety_tick, {"seconds": s.safety_interval_seconds}, "safety_tick", True),
            (self._dashboard_refresh, {"seconds": s.dashboard_interval_seconds}, "dashboard_refresh", True),
            (self._suggestions, {"minutes": s.suggestions_interval_minutes}, "ai_suggestions", True),
            (self._anomaly_sweep, {"minutes": s.anomaly_sweep_interval_minutes}, "anomaly_sweep", s.enable_anomaly_sweep),
            (self._autonomous_run, {"minutes": s.autonomous_interval_minutes}, "autonomous_analysis", s.enable_autonomous_agent),
        ]
        for func, interval, job_id, enabled in jobs:
            if not enabled:
                self.logger.info("job_disabled", job=job_id)
                continue
            self.scheduler.add_job(
                func,
                "interval",
                id=job_id,
                max_instances=1,
                coalesce=True,
                **interval,
            )
        self.scheduler.start()

        await self._dashboard_refresh()
        self.logger.info(
            "service_started",
            llm_provider=s.llm_provider,
            data_dir=s.data_dir,
            jobs=[job.id for job in self.scheduler.get_jobs()],
        )
        await self.wait_for_shutdown()

    async def close(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.components:
            await self.components.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _routine_tick(self) -> None:
        try:
            fired = self.components.routine_scheduler.tick()
            if fired:
                self.logger.info("routines_fired", routine_ids=fired)
        except Exception:
            self.logger.exception("routine_tick_failed")

    async def _safety_tick(self) -> None:
        try:
            self.components.safety.enforce_max_durations()
        except Exception:
            self.logger.exception("safety_tick_failed")

    async def _dashboard_refresh(self) -> None:
        try:
            self.components.dashboard.refresh()
        except Exception:
            self.logger.exception("dashboard_refresh_failed")

    async def _suggestions(self) -> None:
        try:
            await refresh_suggestions(self.components.brain, self.components.profiles)
        except Exception:
            self.logger.exception("ai_suggestions_failed")

    async def _anomaly_sweep(self) -> None:
        try:
            if not self.components.safety.anomalies():
                return
            result = await self.components.brain.run_background(ANOMALY_SWEEP_PROMPT)
            self.logger.info("anomaly_sweep_done", tool_calls=len(result.tool_calls), summary=result.text[:200])
        except Exception:
            self.logger.exception("anomaly_sweep_failed")

    async def _autonomous_run(self) -> None:
        try:
            entry = await self.components.autonomous.run()
            self.logger.info("autonomous_run_logged", execution_id=entry.execution_id, action=entry.action)
        except Exception:
            self.logger.exception("autonomous_run_job_failed")


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------


async def _chat_once(settings: EcoSyncSettings, message: str) -> str:
    components = build_components(settings)
    try:
        return await components.brain.process_message(message)
    finally:
        await components.close()


async def _autonomous_once(settings: EcoSyncSettings) -> str:
    components = build_components(settings)
    try:
        entry = await components.autonomous.run()
        return entry.result
    finally:
        await components.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="ecosync", description="EcoSync home energy assistant")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="start the service and its timers")
    chat = sub.add_parser("chat", help="send one message to the assistant")
    chat.add_argument("message")
    sub.add_parser("autonomous", help="run one autonomous analysis")
    args = parser.parse_args(argv)

    settings = EcoSyncSettings()
    if args.command == "run":
        asyncio.run(EcoSyncService(settings).start())
    elif args.command == "chat":
        print(asyncio.run(_chat_once(settings, args.message)))
    else:
        print(asyncio.run(_autonomous_once(settings)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
