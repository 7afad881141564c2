"""Dashboard snapshot stored on the household profile.

``build_snapshot`` is a pure function over the ledger, usage log, routines
and profile. ``DashboardRefresher`` computes and stores it on a timer, and
``refresh_suggestions`` asks the model for a short list of tips once an hour.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from ecosync.brain import Brain
from ecosync.config import EcoSyncSettings
from ecosync.cost import cost
from ecosync.household import HouseholdProfile, ProfileStore
from ecosync.ledger import ApplianceLedger, Clock, utc_now
from ecosync.models import Appliance, Routine, UsageLogEntry
from ecosync.projection import project
from ecosync.prompts import SUGGESTIONS_PROMPT
from ecosync.routines import RoutineStore
from ecosync.usage_log import UsageLog
from shared.log import get_logger

logger = get_logger("dashboard")

TOP_CONSUMERS = 5
DOMINANT_SHARE = 0.4
MAX_SUGGESTIONS = 5


def _month_entries(entries: list[UsageLogEntry], local_now: datetime) -> list[UsageLogEntry]:
    tz = local_now.tzinfo
    return [
        e
        for e in entries
        if (local := e.end_ts.astimezone(tz)).year == local_now.year and local.month == local_now.month
    ]


def rule_suggestions(
    snapshot: dict[str, Any],
    profile: HouseholdProfile,
    appliances: list[Appliance],
    routines: list[Routine],
) -> list[str]:
    suggestions: list[str] = []
    projection = snapshot["projection"]

    for insight in projection["analysis_insights"]:
        if "exceed budget" in insight:
            suggestions.append(f"Budget: {insight}")
        elif "weekend" in insight.lower() or "weekday" in insight.lower():
            suggestions.append(f"Usage pattern: {insight}")

    top = snapshot["top_consumers"]
    if top:
        leader = top[0]
        total = snapshot["total_usage_kwh"]
        if total > 0 and leader["usage_kwh"] > total * DOMINANT_SHARE:
            suggestions.append(
                f"{leader['name']} is your highest energy consumer. Reducing its use will save the most."
            )
        appliance = next((a for a in appliances if a.name == leader["name"]), None)
        scheduled = appliance is not None and any(
            action.appliance_id == appliance.uid for r in routines for action in r.actions
        )
        if appliance is not None and not scheduled:
            suggestions.append(
                f"Your top consumer, {leader['name']}, has no routines. A schedule could help save energy."
            )

    days = projection["usage_patterns"]["days_analyzed"]
    suggestions.append(f"Projection confidence is {projection['confidence_level']}, based on {days} days of usage data.")
    return suggestions


def build_snapshot(
    appliances: list[Appliance],
    entries: list[UsageLogEntry],
    routines: list[Routine],
    profile: HouseholdProfile,
    now: datetime,
    tz: str = "UTC",
    tiers: list[tuple[float, float]] | None = None,
) -> dict[str, Any]:
    """Month-to-date totals, top consumers, projection and rule-based suggestions."""
    local_now = now.astimezone(ZoneInfo(tz))
    month = _month_entries(entries, local_now)
    names = {a.uid: a.name for a in appliances}

    total_kwh = sum(e.energy_kwh for e in month if e.energy_kwh > 0)
    total_cost = cost(total_kwh, tiers)

    by_appliance: dict[str, float] = {}
    for entry in month:
        name = names.get(entry.appliance_id, entry.appliance_id)
        by_appliance[name] = by_appliance.get(name, 0.0) + max(entry.energy_kwh, 0.0)
    top = [
        {"name": name, "usage_kwh": round(kwh, 4)}
        for name, kwh in sorted(by_appliance.items(), key=lambda kv: kv[1], reverse=True)[:TOP_CONSUMERS]
    ]

    projection = project(
        entries,
        current_usage_kwh=total_kwh,
        current_cost=total_cost,
        days_passed=local_now.day,
        monthly_budget=profile.monthly_budget,
        now=now,
        appliances=appliances,
        tz=tz,
        tiers=tiers,
    )

    snapshot: dict[str, Any] = {
        "total_usage_kwh": round(total_kwh, 4),
        "total_cost": total_cost,
        "projected_cost": projection["projected_total_cost"],
        "top_consumers": top,
        "appliances_on": sum(1 for a in appliances if a.is_on),
        "projection": {
            "confidence_level": projection["confidence_level"],
            "analysis_insights": projection["analysis_insights"],
            "usage_patterns": projection["usage_patterns"],
        },
        "last_updated": now.isoformat(),
    }
    snapshot["suggestions"] = rule_suggestions(snapshot, profile, appliances, routines)
    return snapshot


class DashboardRefresher:
    def __init__(
        self,
        ledger: ApplianceLedger,
        usage_log: UsageLog,
        routines: RoutineStore,
        profiles: ProfileStore,
        settings: EcoSyncSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._usage_log = usage_log
        self._routines = routines
        self._profiles = profiles
        self._settings = settings
        self._clock = clock

    def refresh(self) -> dict[str, Any]:
        profile = self._profiles.get()
        snapshot = build_snapshot(
            self._ledger.all(),
            self._usage_log.entries(),
            self._routines.all(),
            profile,
            self._clock(),
            tz=self._settings.timezone,
            tiers=self._settings.tiers,
        )
        # LLM suggestions are written by a separate job and survive refreshes
        if "ai_suggestions" in profile.dashboard:
            snapshot["ai_suggestions"] = profile.dashboard["ai_suggestions"]
        self._profiles.set_dashboard(snapshot)
        logger.debug("dashboard_refreshed", total_kwh=snapshot["total_usage_kwh"], cost=snapshot["total_cost"])
        return snapshot


def parse_suggestions(text: str) -> list[str]:
    lines = []
    for raw in text.splitlines():
        line = raw.strip().lstrip("-*•0123456789.) ").strip()
        if line and not line.startswith("```"):
            lines.append(line)
    return lines[:MAX_SUGGESTIONS]


async def refresh_suggestions(brain: Brain, profiles: ProfileStore) -> list[str]:
    """Ask the model for tips on the stored dashboard. Keeps the old list on failure."""
    dashboard = profiles.get().dashboard
    if not dashboard:
        logger.info("suggestions_skipped", reason="no_dashboard")
        return []

    context = "\n".join(
        [
            f"Usage this month: {dashboard.get('total_usage_kwh', 0)} kWh",
            f"Cost so far: {dashboard.get('total_cost', 0)}",
            f"Projected monthly cost: {dashboard.get('projected_cost', 0)}",
            f"Monthly budget: {profiles.get().monthly_budget}",
            "Top consumers: "
            + ", ".join(f"{c['name']} ({c['usage_kwh']} kWh)" for c in dashboard.get("top_consumers", [])),
        ]
    )
    text = await brain.complete("You are a concise home energy advisor.", SUGGESTIONS_PROMPT.format(context=context))
    if not text:
        logger.warning("suggestions_unavailable")
        return dashboard.get("ai_suggestions", [])

    suggestions = parse_suggestions(text)
    profiles.merge_dashboard(ai_suggestions=suggestions)
    logger.info("suggestions_updated", count=len(suggestions))
    return suggestions
