"""Safety checks: long-running anomalies, maintenance due, max-duration cutoff."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ecosync.ledger import ApplianceLedger
from ecosync.models import Appliance, ApplianceState, Trigger
from shared.log import get_logger

logger = get_logger("safety")

DEFAULT_MAINTENANCE_THRESHOLDS = {"Air Conditioner": 500.0, "Fan": 1000.0}


def find_anomalies(
    appliances: list[Appliance],
    now: datetime,
    threshold_hours: float = 8.0,
) -> list[dict[str, Any]]:
    """Appliances that have been on for longer than ``threshold_hours``."""
    anomalies = []
    for appliance in appliances:
        running = appliance.on_duration(now)
        if running is None:
            continue
        hours = running.total_seconds() / 3600
        if hours > threshold_hours:
            anomalies.append(
                {
                    "uid": appliance.uid,
                    "name": appliance.name,
                    "type": appliance.type,
                    "running_for_hours": round(hours, 1),
                    "suggestion": (
                        f"The {appliance.name} has been running for over "
                        f"{threshold_hours:g} hours, which is unusual."
                    ),
                }
            )
    return anomalies


def maintenance_alerts(
    appliances: list[Appliance],
    thresholds: dict[str, float] | None = None,
) -> list[dict[str, Any]]:
    """Appliances whose lifetime usage passed the threshold for their type."""
    thresholds = DEFAULT_MAINTENANCE_THRESHOLDS if thresholds is None else thresholds
    lowered = {k.lower(): v for k, v in thresholds.items()}
    alerts = []
    for appliance in appliances:
        limit = lowered.get(appliance.type.lower())
        if limit is None or appliance.total_usage_kwh <= limit:
            continue
        alerts.append(
            {
                "uid": appliance.uid,
                "name": appliance.name,
                "type": appliance.type,
                "total_usage_kwh": round(appliance.total_usage_kwh, 2),
                "recommendation": (
                    f"The {appliance.name} has passed {limit:g} kWh of use. "
                    "It may need a filter clean or check-up to stay efficient."
                ),
            }
        )
    return alerts


class SafetyMonitor:
    """Per-tick enforcement of each appliance's max on-duration."""

    def __init__(self, ledger: ApplianceLedger, anomaly_threshold_hours: float = 8.0) -> None:
        self._ledger = ledger
        self._anomaly_threshold_hours = anomaly_threshold_hours

    def overdue(self, now: datetime) -> list[Appliance]:
        overdue = []
        for appliance in self._ledger.all():
            running = appliance.on_duration(now)
            budget = appliance.max_on_duration_minutes or 0
            if running is None or budget <= 0:
                continue
            if running.total_seconds() > budget * 60:
                overdue.append(appliance)
        return overdue

    def enforce_max_durations(self) -> list[str]:
        """Switch off every appliance past its budget. Returns the uids switched off."""
        now = self._ledger.clock()
        switched: list[str] = []
        for appliance in self.overdue(now):
            result = self._ledger.set_state(appliance.uid, ApplianceState.OFF, Trigger.MAX_DURATION)
            if result.success:
                switched.append(appliance.uid)
                logger.warning(
                    "max_duration_enforced",
                    uid=appliance.uid,
                    name=appliance.name,
                    max_minutes=appliance.max_on_duration_minutes,
                )
            else:
                logger.error("max_duration_enforce_failed", uid=appliance.uid, error=result.message)
        return switched

    def anomalies(self) -> list[dict[str, Any]]:
        return find_anomalies(self._ledger.all(), self._ledger.clock(), self._anomaly_threshold_hours)
