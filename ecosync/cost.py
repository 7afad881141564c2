"""Tiered electricity tariff."""

from __future__ import annotations

from typing import Any

# (band size in kWh, rate per kWh); a band of 0 is unbounded
DEFAULT_TIERS: list[tuple[float, float]] = [
    (100, 3.50),
    (100, 5.00),
    (200, 6.50),
    (0, 8.00),
]


def _bands(kwh: float, tiers: list[tuple[float, float]]) -> list[tuple[float, float, float]]:
    """Split ``kwh`` into ``(units, rate, amount)`` per tier, unrounded."""
    remaining = kwh
    bands: list[tuple[float, float, float]] = []
    for size, rate in tiers:
        if remaining <= 0:
            break
        units = remaining if size <= 0 else min(remaining, size)
        bands.append((units, rate, units * rate))
        remaining -= units
    return bands


def cost(kwh: float, tiers: list[tuple[float, float]] | None = None) -> float:
    """Bill for ``kwh`` units. Zero for non-positive usage."""
    if kwh <= 0:
        return 0.0
    total = sum(amount for _, _, amount in _bands(kwh, tiers or DEFAULT_TIERS))
    return round(total, 2)


def breakdown(kwh: float, tiers: list[tuple[float, float]] | None = None) -> dict[str, Any]:
    """Per-tier units and amounts, for display next to the total."""
    tiers = tiers or DEFAULT_TIERS
    rows = []
    lower = 0.0
    for units, rate, amount in _bands(max(kwh, 0.0), tiers):
        rows.append(
            {
                "from_kwh": round(lower, 3),
                "to_kwh": round(lower + units, 3),
                "units_kwh": round(units, 3),
                "rate": rate,
                "amount": round(amount, 2),
            }
        )
        lower += units
    return {"units_kwh": round(max(kwh, 0.0), 3), "total_cost": cost(kwh, tiers), "tiers": rows}
