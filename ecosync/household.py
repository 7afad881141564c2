"""Household profile and operating mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ecosync.models import Mode
from ecosync.store import JsonCollectionStore, Repository
from shared.log import get_logger

logger = get_logger("household")


@dataclass
class HouseholdProfile:
    uid: str
    name: str
    monthly_budget: float
    location: str
    country_code: str
    dashboard: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "name": self.name,
            "monthly_budget": self.monthly_budget,
            "location": self.location,
            "country_code": self.country_code,
            "dashboard": self.dashboard,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HouseholdProfile:
        return cls(
            uid=str(data.get("uid", "household")),
            name=data.get("name", ""),
            monthly_budget=float(data.get("monthly_budget") or 0.0),
            location=data.get("location", ""),
            country_code=data.get("country_code", ""),
            dashboard=data.get("dashboard") or {},
        )


class ProfileStore:
    """The single household profile, created from defaults on first read."""

    def __init__(self, path: Path | str, defaults: HouseholdProfile, max_retries: int = 3) -> None:
        self._repo: Repository[HouseholdProfile] = Repository(
            JsonCollectionStore(path, max_retries=max_retries),
            HouseholdProfile.from_dict,
            key="uid",
        )
        self._defaults = defaults

    def get(self) -> HouseholdProfile:
        profiles = self._repo.all()
        if profiles:
            return profiles[0]
        self._repo.add(self._defaults)
        logger.info("profile_created", name=self._defaults.name)
        return self._defaults

    def update(self, **changes: Any) -> HouseholdProfile:
        self.get()

        def _mutate(profiles: list[HouseholdProfile]) -> HouseholdProfile:
            profile = profiles[0]
            for key, value in changes.items():
                if hasattr(profile, key) and key != "uid":
                    setattr(profile, key, value)
            return profile

        return self._repo.update(_mutate)

    def set_dashboard(self, snapshot: dict[str, Any]) -> None:
        self.update(dashboard=snapshot)

    def merge_dashboard(self, **values: Any) -> None:
        """Update some keys of the stored dashboard without dropping the others."""
        dashboard = dict(self.get().dashboard)
        dashboard.update(values)
        self.update(dashboard=dashboard)


class ModeStore:
    """Operating mode, persisted separately from the profile."""

    def __init__(self, path: Path | str) -> None:
        self._store = JsonCollectionStore(path)

    def get(self) -> Mode:
        items = self._store.items()
        if not items:
            return Mode.BALANCED
        try:
            return Mode(items[-1].get("mode", Mode.BALANCED.value))
        except ValueError:
            logger.warning("mode_invalid_on_disk", value=items[-1].get("mode"))
            return Mode.BALANCED

    def set(self, mode: Mode) -> None:
        def _mutate(items: list[dict[str, Any]]) -> None:
            items[:] = [{"mode": mode.value}]

        self._store.transact(_mutate)
        logger.info("mode_changed", mode=mode.value)
