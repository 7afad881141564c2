"""Month-end usage and cost projection from the usage log.

The projection aggregates completed sessions into per-day totals (in the
household timezone), then extrapolates the rest of the month from
weekday/weekend means, an outlier-filtered mean, a two-week trend and a
seasonal factor. Given the same log, inputs and ``now`` the result is
identical.
"""

from __future__ import annotations

import calendar
import math
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import numpy as np
import pandas as pd

from ecosync.cost import cost
from ecosync.models import Appliance, UsageLogEntry

HOT_MONTHS = {4, 5, 6, 7}
COOL_MONTHS = {11, 12, 1, 2, 3}
TREND_MIN_DAYS = 14
TREND_BOUNDS = (0.8, 1.2)


def seasonal_multiplier(month: int) -> float:
    if month in HOT_MONTHS:
        return 1.15
    if month in COOL_MONTHS:
        return 0.9
    return 1.0


def daily_totals(entries: list[UsageLogEntry], tz: str) -> pd.DataFrame:
    """Per-calendar-day energy, oldest day first.

    Columns: ``kwh`` and ``weekend`` (bool), indexed by local date. Entries
    without a timestamp or with non-positive energy are skipped.
    """
    rows = [
        {"ts": e.end_ts or e.start_ts, "kwh": e.energy_kwh}
        for e in entries
        if (e.end_ts or e.start_ts) is not None and e.energy_kwh > 0
    ]
    if not rows:
        return pd.DataFrame({"kwh": pd.Series(dtype=float), "weekend": pd.Series(dtype=bool)})

    df = pd.DataFrame(rows)
    local = pd.to_datetime(df["ts"], utc=True).dt.tz_convert(tz)
    df["day"] = local.dt.date
    daily = df.groupby("day")["kwh"].sum().sort_index().to_frame()
    daily["weekend"] = [d.weekday() >= 5 for d in daily.index]
    return daily


def _outlier_threshold(values: np.ndarray) -> float:
    ordered = np.sort(values)
    n = len(ordered)
    q1 = ordered[int(math.floor(0.25 * n))]
    q3 = ordered[int(math.floor(0.75 * n))]
    return float(q3 + 1.5 * (q3 - q1))


def _trend(chronological: np.ndarray) -> float:
    if len(chronological) < TREND_MIN_DAYS:
        return 1.0
    recent = chronological[-7:].mean()
    earlier = chronological[-14:-7].mean()
    if earlier <= 0:
        return 1.0
    low, high = TREND_BOUNDS
    return float(min(high, max(low, recent / earlier)))


def project(
    entries: list[UsageLogEntry],
    current_usage_kwh: float,
    current_cost: float,
    days_passed: int,
    monthly_budget: float,
    now: datetime,
    appliances: list[Appliance] | None = None,
    tz: str = "UTC",
    tiers: list[tuple[float, float]] | None = None,
) -> dict[str, Any]:
    current_usage = float(current_usage_kwh or 0.0)
    days_passed = max(int(days_passed or 1), 1)
    budget = float(monthly_budget or 0.0)

    local_now = now.astimezone(ZoneInfo(tz))
    days_in_month = calendar.monthrange(local_now.year, local_now.month)[1]
    remaining_days = max(0, days_in_month - days_passed)
    naive_daily = current_usage / days_passed

    daily = daily_totals(entries, tz)
    values = daily["kwh"].to_numpy(dtype=float)
    n_days = len(values)
    weekday_values = daily.loc[~daily["weekend"], "kwh"].to_numpy(dtype=float)
    weekend_values = daily.loc[daily["weekend"], "kwh"].to_numpy(dtype=float)

    avg_daily = float(values.mean()) if n_days else naive_daily
    avg_weekday = float(weekday_values.mean()) if len(weekday_values) else avg_daily
    avg_weekend = float(weekend_values.mean()) if len(weekend_values) else avg_daily

    if n_days:
        threshold = _outlier_threshold(values)
        normal = values[values <= threshold]
    else:
        normal = values
    stable_avg = float(normal.mean()) if len(normal) else avg_daily
    outliers = n_days - len(normal)

    remaining_weekdays = math.floor(remaining_days * 5 / 7)
    remaining_weekends = remaining_days - remaining_weekdays

    if len(weekday_values) and len(weekend_values):
        base = remaining_weekdays * avg_weekday + remaining_weekends * avg_weekend
    elif stable_avg > 0:
        base = remaining_days * stable_avg
    else:
        base = remaining_days * naive_daily
    if math.isnan(base) or base < 0:
        base = remaining_days * naive_daily

    trend = _trend(values)
    seasonal = seasonal_multiplier(local_now.month) if n_days else 1.0
    adjusted_remaining = base * trend * seasonal

    projected_usage = current_usage + adjusted_remaining
    projected_cost = cost(projected_usage, tiers)

    if n_days >= 14 and len(weekday_values) >= 5 and len(weekend_values) >= 2:
        confidence = "high"
    elif n_days < 7:
        confidence = "low"
    else:
        confidence = "medium"

    top = _top_consumers(entries, appliances or [])
    insights = _insights(projected_cost, budget, avg_weekday, avg_weekend, trend, top)

    return {
        "projected_total_usage_kwh": round(projected_usage, 4),
        "projected_total_cost": round(projected_cost, 2),
        "current_usage_kwh": current_usage,
        "current_cost": float(current_cost or 0.0),
        "monthly_budget": budget,
        "remaining_days": remaining_days,
        "confidence_level": confidence,
        "analysis_insights": insights,
        "usage_patterns": {
            "avg_daily_usage": round(avg_daily, 4),
            "avg_weekday_usage": round(avg_weekday, 4),
            "avg_weekend_usage": round(avg_weekend, 4),
            "stable_avg_daily_usage": round(stable_avg, 4),
            "seasonal_multiplier": seasonal,
            "trend_multiplier": round(trend, 4),
            "days_analyzed": n_days,
            "outliers_detected": outliers,
        },
    }


def _top_consumers(entries: list[UsageLogEntry], appliances: list[Appliance]) -> list[dict[str, Any]]:
    names = {a.uid: a.name for a in appliances}
    totals: dict[str, float] = {}
    for entry in entries:
        if entry.energy_kwh <= 0:
            continue
        name = names.get(entry.appliance_id, entry.appliance_id)
        totals[name] = totals.get(name, 0.0) + entry.energy_kwh
    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:3]
    return [{"name": name, "total_kwh": round(kwh, 4)} for name, kwh in ranked]


def _insights(
    projected_cost: float,
    budget: float,
    avg_weekday: float,
    avg_weekend: float,
    trend: float,
    top: list[dict[str, Any]],
) -> list[str]:
    insights: list[str] = []
    if budget > 0 and projected_cost > budget:
        overage = projected_cost - budget
        insights.append(
            f"Projected to exceed budget by {overage:.2f} ({overage / budget * 100:.1f}%)"
        )
    elif budget > 0:
        insights.append(f"Projected to stay within budget with {budget - projected_cost:.2f} remaining")

    if avg_weekend > avg_weekday * 1.2:
        insights.append("Weekend usage is significantly higher than weekdays")
    elif avg_weekday > avg_weekend * 1.2:
        insights.append("Weekday usage is significantly higher than weekends")

    if trend > 1.1:
        insights.append("Usage trend is increasing, consider energy-saving measures")
    elif trend < 0.9:
        insights.append("Usage trend is decreasing")

    if top:
        insights.append("Top energy consumers: " + ", ".join(t["name"] for t in top))
    return insights
