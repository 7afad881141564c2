"""Appliance ledger: the authoritative appliance state plus energy accrual.

Every state change in the system (chat tools, routines, safety enforcement,
the autonomous agent) goes through ``ApplianceLedger.set_state`` so the same
rules apply to every caller:

- setting the current state again is a successful no-op;
- off -> on opens a session;
- on -> off closes it, accrues ``hours x power_rating`` into the totals and
  appends exactly one UsageLogEntry.

Mutations return a ``LedgerResult`` instead of raising. Storage problems
surface as ``ErrorKind.STORAGE_FAILURE``.
"""

from __future__ import annotations

import random
import string
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ecosync.errors import ErrorKind, StorageError, VersionConflictError
from ecosync.models import Appliance, ApplianceState, Trigger, UsageLogEntry
from ecosync.routines import RoutineStore
from ecosync.store import JsonCollectionStore, Repository
from ecosync.usage_log import UsageLog
from shared.log import get_logger

logger = get_logger("ledger")

Clock = Callable[[], datetime]

UID_ALPHABET = string.ascii_uppercase + string.digits
UID_LENGTH = 5
EDITABLE_FIELDS = frozenset(
    {"name", "priority_level", "max_on_duration_minutes", "description", "location"}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LedgerResult:
    """Outcome of a ledger mutation (the ``set_state`` contract)."""

    success: bool
    message: str
    appliance: Appliance | None = None
    previous_state: str | None = None
    new_state: str | None = None
    error_kind: ErrorKind | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.appliance is not None:
            data["appliance"] = self.appliance.to_dict()
        if self.previous_state is not None:
            data["previous_state"] = self.previous_state
        if self.new_state is not None:
            data["new_state"] = self.new_state
        if self.error_kind is not None:
            data["error_kind"] = self.error_kind.value
            data["error"] = self.message
        data.update(self.details)
        return data


def _failure(kind: ErrorKind, message: str, **details: Any) -> LedgerResult:
    return LedgerResult(success=False, message=message, error_kind=kind, details=details)


class ApplianceLedger:
    def __init__(
        self,
        path: Path | str,
        usage_log: UsageLog,
        routines: RoutineStore | None = None,
        clock: Clock = utc_now,
        max_retries: int = 3,
    ) -> None:
        self._repo: Repository[Appliance] = Repository(
            JsonCollectionStore(path, max_retries=max_retries),
            Appliance.from_dict,
            key="uid",
        )
        self._usage_log = usage_log
        self._routines = routines
        self._clock = clock
        self._max_retries = max_retries

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[Appliance]:
        return self._repo.all()

    def get(self, uid: str) -> Appliance | None:
        return self._repo.get(uid)

    def find(
        self,
        names: list[str] | str | None = None,
        appliance_type: str | None = None,
    ) -> list[Appliance]:
        """Select appliances by name substrings, by exact type, or ``"all"``.

        A single name string is treated as a one-item list. Matching is
        case-insensitive. Each appliance appears at most once.
        """
        if isinstance(names, str):
            names = [names]
        appliances = self.all()
        wanted = [n.strip().lower() for n in names or [] if n and n.strip()]
        kind = (appliance_type or "").strip().lower()

        if "all" in wanted or kind == "all":
            return appliances

        matched: list[Appliance] = []
        for appliance in appliances:
            name = appliance.name.lower()
            if any(w in name for w in wanted) or (kind and appliance.type.lower() == kind):
                matched.append(appliance)
        return matched

    def find_by_name(self, name: str) -> Appliance | None:
        """First appliance whose name contains ``name`` (case-insensitive)."""
        wanted = name.strip().lower()
        if not wanted:
            return None
        for appliance in self.all():
            if wanted in appliance.name.lower():
                return appliance
        return None

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def set_state(
        self,
        appliance_id: str,
        new_state: str | ApplianceState,
        trigger: Trigger | str = Trigger.MANUAL,
    ) -> LedgerResult:
        raw_state = new_state.value if isinstance(new_state, ApplianceState) else str(new_state)
        normalized = raw_state.strip().lower()
        if normalized not in ("on", "off"):
            return _failure(
                ErrorKind.INVALID_ARGUMENT,
                f"Invalid state '{new_state}'. Use 'on' or 'off'.",
            )
        try:
            trigger = Trigger(trigger)
        except ValueError:
            return _failure(ErrorKind.INVALID_ARGUMENT, f"Invalid trigger '{trigger}'.")
        target = ApplianceState(normalized)

        for attempt in range(self._max_retries + 1):
            try:
                return self._apply_state(appliance_id, target, trigger)
            except VersionConflictError:
                if attempt == self._max_retries:
                    return _failure(
                        ErrorKind.CONFLICT,
                        f"Appliance store kept changing while updating {appliance_id}.",
                    )
                logger.warning("set_state_retry", uid=appliance_id, attempt=attempt + 1)
            except StorageError as exc:
                logger.error("set_state_storage_failed", uid=appliance_id, error=str(exc))
                return _failure(ErrorKind.STORAGE_FAILURE, f"Could not save appliance state: {exc}")
        raise RuntimeError("unreachable")

    def _apply_state(
        self,
        appliance_id: str,
        target: ApplianceState,
        trigger: Trigger,
    ) -> LedgerResult:
        version, appliances = self._repo.snapshot()
        index = next((i for i, a in enumerate(appliances) if a.uid == appliance_id), None)
        if index is None:
            return _failure(ErrorKind.NOT_FOUND, f"Appliance {appliance_id} not found.")

        current = appliances[index]
        if current.state == target:
            return LedgerResult(
                success=True,
                message=f"{current.name} is already {target.value}.",
                appliance=current,
                previous_state=current.state.value,
                new_state=target.value,
            )

        now = self._clock()
        entry: UsageLogEntry | None = None
        if target == ApplianceState.ON:
            updated = replace(
                current,
                state=ApplianceState.ON,
                last_turned_on_at=now,
                last_turned_off_at=None,
                usage_count=current.usage_count + 1,
                updated_at=now,
            )
        else:
            total = current.total_usage_kwh
            since_on = current.usage_since_last_on
            if current.last_turned_on_at is not None:
                seconds = max((now - current.last_turned_on_at).total_seconds(), 0.0)
                energy = seconds / 3600 * current.power_rating_kwh_per_hour
                total += energy
                since_on = energy
                entry = UsageLogEntry(
                    id=uuid.uuid4().hex,
                    appliance_id=current.uid,
                    start_ts=current.last_turned_on_at,
                    end_ts=now,
                    duration_seconds=round(seconds),
                    energy_kwh=round(energy, 5),
                    trigger=trigger,
                )
            updated = replace(
                current,
                state=ApplianceState.OFF,
                last_turned_on_at=None,
                last_turned_off_at=now,
                total_usage_kwh=total,
                usage_since_last_on=since_on,
                updated_at=now,
            )

        changed = list(appliances)
        changed[index] = updated
        new_version = self._repo.replace_all(changed, version)

        if entry is not None:
            try:
                self._usage_log.append(entry)
            except StorageError as exc:
                self._rollback(appliances, new_version)
                logger.error("usage_log_append_failed", uid=current.uid, error=str(exc))
                return _failure(
                    ErrorKind.STORAGE_FAILURE,
                    f"Could not record usage for {current.name}; state change reverted.",
                )

        logger.info(
            "appliance_state_changed",
            uid=current.uid,
            name=current.name,
            previous_state=current.state.value,
            new_state=target.value,
            trigger=trigger.value,
            energy_kwh=entry.energy_kwh if entry else None,
        )
        return LedgerResult(
            success=True,
            message=f"{current.name} turned {target.value}.",
            appliance=updated,
            previous_state=current.state.value,
            new_state=target.value,
        )

    def _rollback(self, snapshot: list[Appliance], version: int) -> None:
        try:
            self._repo.replace_all(snapshot, version)
        except StorageError:
            logger.exception("ledger_rollback_failed")

    # ------------------------------------------------------------------
    # Catalogue maintenance
    # ------------------------------------------------------------------

    def add_appliance(
        self,
        name: str,
        appliance_type: str,
        power_rating_kwh_per_hour: float,
        description: str = "",
        location: str = "",
    ) -> LedgerResult:
        name = (name or "").strip()
        if not name:
            return _failure(ErrorKind.INVALID_ARGUMENT, "Appliance name is required.")
        try:
            rating = float(power_rating_kwh_per_hour)
        except (TypeError, ValueError):
            return _failure(ErrorKind.INVALID_ARGUMENT, "power_rating_kwh_per_hour must be a number.")
        if rating <= 0:
            return _failure(ErrorKind.INVALID_ARGUMENT, "power_rating_kwh_per_hour must be positive.")

        now = self._clock()

        def _mutate(appliances: list[Appliance]) -> Appliance:
            taken = {a.uid for a in appliances}
            uid = self._new_uid()
            while uid in taken:
                uid = self._new_uid()
            appliance = Appliance(
                uid=uid,
                name=name,
                type=(appliance_type or "Other").strip(),
                power_rating_kwh_per_hour=rating,
                description=description,
                location=location,
                updated_at=now,
            )
            appliances.append(appliance)
            return appliance

        try:
            appliance = self._repo.update(_mutate)
        except StorageError as exc:
            return _failure(ErrorKind.STORAGE_FAILURE, f"Could not add appliance: {exc}")

        logger.info("appliance_added", uid=appliance.uid, name=appliance.name, type=appliance.type)
        return LedgerResult(success=True, message=f"Added {appliance.name}.", appliance=appliance)

    @staticmethod
    def _new_uid() -> str:
        return "".join(random.choices(UID_ALPHABET, k=UID_LENGTH))

    def update_details(self, uid: str, updates: dict[str, Any]) -> LedgerResult:
        """Change allow-listed descriptive fields. State fields are never touched."""
        accepted = {k: v for k, v in (updates or {}).items() if k in EDITABLE_FIELDS}
        ignored = sorted(set(updates or {}) - EDITABLE_FIELDS)
        if not accepted:
            return _failure(
                ErrorKind.INVALID_ARGUMENT,
                f"No editable fields given. Allowed: {', '.join(sorted(EDITABLE_FIELDS))}.",
                ignored_fields=ignored,
            )
        try:
            if "priority_level" in accepted:
                accepted["priority_level"] = int(accepted["priority_level"])
            if "max_on_duration_minutes" in accepted:
                minutes = float(accepted["max_on_duration_minutes"])
                if minutes < 0:
                    raise ValueError("max_on_duration_minutes must be >= 0")
                accepted["max_on_duration_minutes"] = minutes
        except (TypeError, ValueError) as exc:
            return _failure(ErrorKind.INVALID_ARGUMENT, f"Invalid update: {exc}")

        now = self._clock()

        def _mutate(appliances: list[Appliance]) -> Appliance | None:
            for i, appliance in enumerate(appliances):
                if appliance.uid == uid:
                    appliances[i] = replace(appliance, **accepted, updated_at=now)
                    return appliances[i]
            return None

        try:
            updated = self._repo.update(_mutate)
        except StorageError as exc:
            return _failure(ErrorKind.STORAGE_FAILURE, f"Could not update appliance: {exc}")
        if updated is None:
            return _failure(ErrorKind.NOT_FOUND, f"Appliance {uid} not found.")

        logger.info("appliance_updated", uid=uid, fields=sorted(accepted))
        return LedgerResult(
            success=True,
            message=f"Updated {updated.name}: {', '.join(sorted(accepted))}.",
            appliance=updated,
            details={"ignored_fields": ignored} if ignored else {},
        )

    def delete_appliance(self, uid: str) -> LedgerResult:
        def _mutate(appliances: list[Appliance]) -> Appliance | None:
            for i, appliance in enumerate(appliances):
                if appliance.uid == uid:
                    return appliances.pop(i)
            return None

        try:
            removed = self._repo.update(_mutate)
        except StorageError as exc:
            return _failure(ErrorKind.STORAGE_FAILURE, f"Could not delete appliance: {exc}")
        if removed is None:
            return _failure(ErrorKind.NOT_FOUND, f"Appliance {uid} not found.")

        details: dict[str, Any] = {}
        if self._routines is not None:
            try:
                modified, dropped = self._routines.strip_appliance(uid)
                details = {"routines_modified": modified, "routines_removed": dropped}
            except StorageError:
                logger.exception("routine_cascade_failed", uid=uid)

        logger.info("appliance_deleted", uid=uid, name=removed.name, **details)
        return LedgerResult(
            success=True,
            message=f"Deleted {removed.name}.",
            appliance=removed,
            details=details,
        )
