"""Routine store: scheduled batches of appliance commands."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any

from ecosync.models import CreatedBy, Routine, RoutineAction, Schedule
from ecosync.store import JsonCollectionStore, Repository
from shared.log import get_logger

logger = get_logger("routines")

# Fields manage_existing_routines may change; ``id`` is never one of them
MODIFIABLE_FIELDS = ("name", "description", "schedule", "actions")


def new_routine_id() -> str:
    return uuid.uuid4().hex[:12]


class RoutineStore:
    def __init__(self, path: Path | str, max_retries: int = 3) -> None:
        self._repo: Repository[Routine] = Repository(
            JsonCollectionStore(path, max_retries=max_retries),
            Routine.from_dict,
        )

    def all(self) -> list[Routine]:
        return self._repo.all()

    def get(self, routine_id: str) -> Routine | None:
        return self._repo.get(routine_id)

    def find_by_name(self, name: str) -> Routine | None:
        wanted = name.strip().lower()
        for routine in self.all():
            if routine.name.lower() == wanted:
                return routine
        return None

    def add(self, routine: Routine) -> Routine:
        self._repo.add(routine)
        logger.info(
            "routine_created",
            routine_id=routine.id,
            name=routine.name,
            created_by=routine.created_by.value,
        )
        return routine

    def delete_by_names(self, names: list[str]) -> list[str]:
        """Delete routines whose name matches (case-insensitive). Returns deleted names."""
        wanted = {n.strip().lower() for n in names}

        def _mutate(routines: list[Routine]) -> list[str]:
            deleted = [r.name for r in routines if r.name.lower() in wanted]
            routines[:] = [r for r in routines if r.name.lower() not in wanted]
            return deleted

        deleted = self._repo.update(_mutate)
        if deleted:
            logger.info("routines_deleted", names=deleted)
        return deleted

    def delete(self, routine_id: str) -> Routine | None:
        def _mutate(routines: list[Routine]) -> Routine | None:
            for i, routine in enumerate(routines):
                if routine.id == routine_id:
                    return routines.pop(i)
            return None

        removed = self._repo.update(_mutate)
        if removed is not None:
            logger.info("routine_deleted", routine_id=routine_id, name=removed.name)
        return removed

    def modify(self, routine_id: str, updates: dict[str, Any]) -> Routine | None:
        """Apply allow-listed ``updates``; unknown keys (and ``id``) are ignored."""

        def _mutate(routines: list[Routine]) -> Routine | None:
            for routine in routines:
                if routine.id != routine_id:
                    continue
                if "name" in updates:
                    routine.name = str(updates["name"])
                if "description" in updates:
                    routine.description = str(updates["description"])
                if isinstance(updates.get("schedule"), dict):
                    merged = {**routine.schedule.to_dict(), **updates["schedule"]}
                    routine.schedule = Schedule.from_dict(merged)
                if isinstance(updates.get("actions"), list):
                    routine.actions = [RoutineAction.from_dict(a) for a in updates["actions"]]
                return routine
            return None

        return self._repo.update(_mutate)

    def remove_created_by(self, created_by: CreatedBy) -> int:
        """Drop every routine created by ``created_by``. Returns how many went."""

        def _mutate(routines: list[Routine]) -> int:
            before = len(routines)
            routines[:] = [r for r in routines if r.created_by != created_by]
            return before - len(routines)

        removed = self._repo.update(_mutate)
        if removed:
            logger.info("routines_cleared", created_by=created_by.value, count=removed)
        return removed

    def strip_appliance(self, appliance_id: str) -> tuple[int, int]:
        """Remove actions targeting ``appliance_id``.

        Routines left without actions are deleted. Returns
        ``(routines_modified, routines_removed)``.
        """

        def _mutate(routines: list[Routine]) -> tuple[int, int]:
            modified = removed = 0
            kept: list[Routine] = []
            for routine in routines:
                actions = [a for a in routine.actions if a.appliance_id != appliance_id]
                if len(actions) == len(routine.actions):
                    kept.append(routine)
                elif actions:
                    routine.actions = actions
                    kept.append(routine)
                    modified += 1
                else:
                    removed += 1
            routines[:] = kept
            return modified, removed

        return self._repo.update(_mutate)
