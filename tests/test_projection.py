from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from ecosync.cost import cost
from ecosync.models import Trigger, UsageLogEntry
from ecosync.projection import daily_totals, project, seasonal_multiplier


def day_entry(day: date, kwh: float, appliance_id: str = "AC001") -> UsageLogEntry:
    end = datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)
    return UsageLogEntry(
        id=f"{appliance_id}-{day.isoformat()}",
        appliance_id=appliance_id,
        start_ts=end - timedelta(hours=1),
        end_ts=end,
        duration_seconds=3600,
        energy_kwh=kwh,
        trigger=Trigger.MANUAL,
    )


def consecutive(start: date, values: list[float]) -> list[UsageLogEntry]:
    return [day_entry(start + timedelta(days=i), kwh) for i, kwh in enumerate(values)]


def run(entries, now, current=30.0, days_passed=10, budget=2000.0):
    return project(
        entries,
        current_usage_kwh=current,
        current_cost=cost(current),
        days_passed=days_passed,
        monthly_budget=budget,
        now=now,
        tz="UTC",
    )


def test_empty_log_extrapolates_naively():
    result = run([], datetime(2024, 3, 10, 20, 0, tzinfo=timezone.utc))

    assert result["remaining_days"] == 21
    assert result["projected_total_usage_kwh"] == pytest.approx(30 + 21 * 3.0)
    assert result["projected_total_cost"] == cost(93.0)
    assert result["confidence_level"] == "low"
    assert result["usage_patterns"]["days_analyzed"] == 0
    assert result["usage_patterns"]["seasonal_multiplier"] == 1.0
    assert result["usage_patterns"]["trend_multiplier"] == 1.0


def test_spike_day_is_an_outlier():
    entries = consecutive(date(2024, 9, 1), [2.0] * 10) + [day_entry(date(2024, 9, 11), 50.0)]
    result = run(entries, datetime(2024, 9, 12, tzinfo=timezone.utc), days_passed=12)

    patterns = result["usage_patterns"]
    assert patterns["outliers_detected"] == 1
    assert patterns["stable_avg_daily_usage"] == 2.0
    assert patterns["avg_daily_usage"] > 2.0


def test_rising_usage_trend_is_capped():
    entries = consecutive(date(2024, 9, 1), [2.0] * 7 + [3.0] * 7)
    result = run(entries, datetime(2024, 9, 15, tzinfo=timezone.utc), days_passed=15)

    assert result["usage_patterns"]["trend_multiplier"] == 1.2
    assert result["confidence_level"] == "high"


def test_falling_usage_trend_is_floored():
    entries = consecutive(date(2024, 9, 1), [4.0] * 7 + [1.0] * 7)
    result = run(entries, datetime(2024, 9, 15, tzinfo=timezone.utc), days_passed=15)
    assert result["usage_patterns"]["trend_multiplier"] == 0.8


def test_trend_needs_two_weeks():
    entries = consecutive(date(2024, 9, 1), [1.0] * 5 + [5.0] * 5)
    result = run(entries, datetime(2024, 9, 11, tzinfo=timezone.utc), days_passed=11)
    assert result["usage_patterns"]["trend_multiplier"] == 1.0
    assert result["confidence_level"] == "medium"


@pytest.mark.parametrize(
    "month, expected",
    [(5, 1.15), (7, 1.15), (12, 0.9), (3, 0.9), (9, 1.0), (10, 1.0)],
)
def test_seasonal_multiplier(month, expected):
    assert seasonal_multiplier(month) == expected


def test_season_applies_only_with_history():
    entries = consecutive(date(2024, 5, 1), [2.0] * 3)
    result = run(entries, datetime(2024, 5, 4, tzinfo=timezone.utc), days_passed=4)
    assert result["usage_patterns"]["seasonal_multiplier"] == 1.15


def test_same_input_same_output():
    entries = consecutive(date(2024, 9, 1), [2.0, 3.5, 1.0, 4.0, 2.5, 2.0, 6.0, 1.5])
    now = datetime(2024, 9, 9, tzinfo=timezone.utc)
    assert run(entries, now) == run(entries, now)


def test_over_budget_insight():
    entries = consecutive(date(2024, 9, 1), [20.0] * 10)
    result = run(entries, datetime(2024, 9, 11, tzinfo=timezone.utc), current=200.0, days_passed=11, budget=500.0)
    assert any("exceed budget" in insight for insight in result["analysis_insights"])


def test_daily_totals_group_by_local_date():
    # 20:00 UTC on the 1st is already the 2nd in Kolkata
    late = UsageLogEntry(
        id="late",
        appliance_id="AC001",
        start_ts=datetime(2024, 9, 1, 19, 0, tzinfo=timezone.utc),
        end_ts=datetime(2024, 9, 1, 20, 0, tzinfo=timezone.utc),
        duration_seconds=3600,
        energy_kwh=1.0,
        trigger=Trigger.MANUAL,
    )
    daily = daily_totals([late, day_entry(date(2024, 9, 2), 2.0)], "Asia/Kolkata")
    assert list(daily.index) == [date(2024, 9, 2)]
    assert daily["kwh"].iloc[0] == 3.0
