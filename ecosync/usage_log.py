"""Append-only log of completed appliance sessions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from ecosync.models import UsageLogEntry
from ecosync.store import JsonCollectionStore, Repository


class UsageLog:
    """Bounded window of UsageLogEntry records, oldest first."""

    def __init__(self, path: Path | str, retention: int = 1000, max_retries: int = 3) -> None:
        self._repo: Repository[UsageLogEntry] = Repository(
            JsonCollectionStore(path, retention=retention, max_retries=max_retries),
            UsageLogEntry.from_dict,
        )

    def append(self, entry: UsageLogEntry) -> None:
        self._repo.add(entry)

    def entries(self) -> list[UsageLogEntry]:
        return self._repo.all()

    def recent(self, limit: int = 50, appliance_id: str | None = None) -> list[UsageLogEntry]:
        """Newest first, optionally for one appliance."""
        items = self.entries()
        if appliance_id:
            items = [e for e in items if e.appliance_id == appliance_id]
        return list(reversed(items))[:limit]

    def since(self, start: datetime) -> list[UsageLogEntry]:
        return [e for e in self.entries() if e.end_ts >= start]

    def energy_by_appliance(self, start: datetime | None = None) -> dict[str, float]:
        totals: dict[str, float] = {}
        for entry in self.entries():
            if start is not None and entry.end_ts < start:
                continue
            totals[entry.appliance_id] = totals.get(entry.appliance_id, 0.0) + entry.energy_kwh
        return totals
