"""Routine scheduler: fires each routine's actions at its HH:MM slot."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from ecosync.ledger import ApplianceLedger, Clock, utc_now
from ecosync.models import WEEKDAYS, ApplianceState, Routine, RoutineAction, Trigger
from ecosync.routines import RoutineStore
from shared.log import get_logger

logger = get_logger("routine-scheduler")


def parse_command(command: str) -> ApplianceState | None:
    """Map a routine command to a target state.

    Exact ``turnOn``/``turnOff`` first, then any command mentioning "on"
    but not "off", then any mentioning "off". Anything else is invalid.
    """
    if command == "turnOn":
        return ApplianceState.ON
    if command == "turnOff":
        return ApplianceState.OFF
    lowered = command.lower()
    if "on" in lowered and "off" not in lowered:
        return ApplianceState.ON
    if "off" in lowered:
        return ApplianceState.OFF
    return None


class RoutineScheduler:
    """Call ``tick()`` at least once a minute.

    A ``(routine, date, HH:MM)`` slot fires at most once even when ticks
    arrive more often than once a minute.
    """

    def __init__(
        self,
        ledger: ApplianceLedger,
        routines: RoutineStore,
        tz: str = "UTC",
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._routines = routines
        self._tz = ZoneInfo(tz)
        self._clock = clock
        self._fired: set[tuple[str, str, str]] = set()

    def tick(self, now: datetime | None = None) -> list[str]:
        """Fire every routine due at the current minute. Returns the routine ids fired."""
        local = (now or self._clock()).astimezone(self._tz)
        hhmm = local.strftime("%H:%M")
        weekday = WEEKDAYS[local.weekday()]
        today = local.date().isoformat()

        # Slots from earlier minutes can never fire again
        self._fired = {slot for slot in self._fired if slot[1] == today and slot[2] == hhmm}

        fired: list[str] = []
        for routine in self._routines.all():
            if not routine.schedule.matches(hhmm, weekday):
                continue
            slot = (routine.id, today, hhmm)
            if slot in self._fired:
                continue
            self._fired.add(slot)
            self._run(routine)
            fired.append(routine.id)
        return fired

    def _run(self, routine: Routine) -> None:
        logger.info("routine_firing", routine=routine.name, routine_id=routine.id, actions=len(routine.actions))
        for action in routine.actions:
            self._apply(routine, action)

    def _apply(self, routine: Routine, action: RoutineAction) -> None:
        state = parse_command(action.command)
        if state is None:
            logger.warning(
                "routine_invalid_command",
                routine=routine.name,
                appliance_id=action.appliance_id,
                command=action.command,
            )
            return
        result = self._ledger.set_state(action.appliance_id, state, Trigger.ROUTINE)
        if not result.success:
            logger.error(
                "routine_action_failed",
                routine=routine.name,
                appliance_id=action.appliance_id,
                error=result.message,
            )
