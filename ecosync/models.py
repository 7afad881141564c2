"""Domain records persisted by EcoSync.

Every record round-trips through a plain JSON dict (``to_dict`` /
``from_dict``). Timestamps are timezone-aware ``datetime`` objects in memory
and ISO 8601 strings on disk; epoch milliseconds from older data files are
accepted on read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class ApplianceState(str, Enum):
    ON = "on"
    OFF = "off"


class Trigger(str, Enum):
    """Who caused a state change."""

    MANUAL = "manual"
    AI = "ai"
    ROUTINE = "routine"
    MAX_DURATION = "max_duration"
    AUTONOMOUS_AI = "autonomous_ai"


class CreatedBy(str, Enum):
    USER = "user"
    AI = "ai"
    AUTONOMOUS_AI = "autonomous_ai"


class Mode(str, Enum):
    BALANCED = "balanced"
    POWER_SAVING = "power-saving"
    EXTREME = "extreme"


WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO string or epoch milliseconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Appliances
# ------------------------------------------------------------------


@dataclass
class Appliance:
    uid: str
    name: str
    type: str
    power_rating_kwh_per_hour: float
    state: ApplianceState = ApplianceState.OFF
    last_turned_on_at: datetime | None = None
    last_turned_off_at: datetime | None = None
    total_usage_kwh: float = 0.0
    usage_since_last_on: float = 0.0
    max_on_duration_minutes: float = 0  # 0 = unlimited
    priority_level: int = 0
    description: str = ""
    location: str = ""
    usage_count: int = 0
    updated_at: datetime | None = None

    @property
    def is_on(self) -> bool:
        return self.state == ApplianceState.ON

    def on_duration(self, now: datetime) -> timedelta | None:
        """How long the current session has been open, if any."""
        if not self.is_on or self.last_turned_on_at is None:
            return None
        return now - self.last_turned_on_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "name": self.name,
            "type": self.type,
            "power_rating_kwh_per_hour": self.power_rating_kwh_per_hour,
            "state": self.state.value,
            "last_turned_on_at": format_ts(self.last_turned_on_at),
            "last_turned_off_at": format_ts(self.last_turned_off_at),
            "total_usage_kwh": self.total_usage_kwh,
            "usage_since_last_on": self.usage_since_last_on,
            "max_on_duration_minutes": self.max_on_duration_minutes,
            "priority_level": self.priority_level,
            "description": self.description,
            "location": self.location,
            "usage_count": self.usage_count,
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Appliance:
        return cls(
            uid=str(data["uid"]),
            name=data.get("name", ""),
            type=data.get("type", ""),
            power_rating_kwh_per_hour=float(data.get("power_rating_kwh_per_hour") or 0.0),
            state=ApplianceState(data.get("state", "off")),
            last_turned_on_at=parse_ts(data.get("last_turned_on_at")),
            last_turned_off_at=parse_ts(data.get("last_turned_off_at")),
            total_usage_kwh=float(data.get("total_usage_kwh") or 0.0),
            usage_since_last_on=float(data.get("usage_since_last_on") or 0.0),
            max_on_duration_minutes=data.get("max_on_duration_minutes") or 0,
            priority_level=data.get("priority_level") or 0,
            description=data.get("description", ""),
            location=data.get("location", ""),
            usage_count=int(data.get("usage_count") or 0),
            updated_at=parse_ts(data.get("updated_at")),
        )


@dataclass(frozen=True)
class UsageLogEntry:
    """One completed on/off session."""

    id: str
    appliance_id: str
    start_ts: datetime
    end_ts: datetime
    duration_seconds: int
    energy_kwh: float
    trigger: Trigger

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "appliance_id": self.appliance_id,
            "start_ts": format_ts(self.start_ts),
            "end_ts": format_ts(self.end_ts),
            "duration_seconds": self.duration_seconds,
            "energy_kwh": self.energy_kwh,
            "trigger": self.trigger.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageLogEntry:
        start = parse_ts(data.get("start_ts"))
        end = parse_ts(data.get("end_ts")) or start
        return cls(
            id=str(data["id"]),
            appliance_id=str(data.get("appliance_id", "")),
            start_ts=start or end,  # type: ignore[arg-type]
            end_ts=end,  # type: ignore[arg-type]
            duration_seconds=int(data.get("duration_seconds") or 0),
            energy_kwh=float(data.get("energy_kwh") or 0.0),
            trigger=Trigger(data.get("trigger", "manual")),
        )


# ------------------------------------------------------------------
# Routines
# ------------------------------------------------------------------


@dataclass
class RoutineAction:
    appliance_id: str
    command: str  # "turnOn" | "turnOff" (free text tolerated, see scheduler)

    def to_dict(self) -> dict[str, Any]:
        return {"appliance_id": self.appliance_id, "command": self.command}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoutineAction:
        return cls(
            appliance_id=str(data.get("appliance_id") or data.get("applianceId") or ""),
            command=str(data.get("command", "")),
        )


@dataclass
class Schedule:
    time: str  # HH:MM, household local time
    days: list[str] = field(default_factory=list)

    def matches(self, hhmm: str, weekday: str) -> bool:
        wanted = weekday.lower()
        return self.time == hhmm and any(d.lower() == wanted for d in self.days)

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "days": list(self.days)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        return cls(time=str(data.get("time", "")), days=[str(d) for d in data.get("days", [])])


@dataclass
class Routine:
    id: str
    name: str
    schedule: Schedule
    actions: list[RoutineAction]
    created_by: CreatedBy = CreatedBy.USER
    description: str = ""
    created_at: datetime | None = None
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "schedule": self.schedule.to_dict(),
            "actions": [a.to_dict() for a in self.actions],
            "created_by": self.created_by.value,
            "created_at": format_ts(self.created_at),
        }
        if self.reasoning:
            data["reasoning"] = self.reasoning
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Routine:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            schedule=Schedule.from_dict(data.get("schedule") or {}),
            actions=[RoutineAction.from_dict(a) for a in data.get("actions") or []],
            created_by=CreatedBy(data.get("created_by") or data.get("createdBy") or "user"),
            description=data.get("description", ""),
            created_at=parse_ts(data.get("created_at")),
            reasoning=data.get("reasoning", ""),
        )


# ------------------------------------------------------------------
# Conversation records
# ------------------------------------------------------------------


@dataclass
class ToolCallRecord:
    """Audit record of one tool execution inside a turn."""

    tool_name: str
    arguments: dict[str, Any]
    response: Any
    exec_ms: int
    timestamp: datetime
    error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "arguments": self.arguments,
            "response": self.response,
            "exec_ms": self.exec_ms,
            "timestamp": format_ts(self.timestamp),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallRecord:
        return cls(
            tool_name=data.get("tool_name", ""),
            arguments=data.get("arguments") or {},
            response=data.get("response"),
            exec_ms=int(data.get("exec_ms") or 0),
            timestamp=parse_ts(data.get("timestamp")) or datetime.now(timezone.utc),
            error=bool(data.get("error", False)),
        )


@dataclass
class ChatEntry:
    timestamp: datetime
    user_message: str
    ai_response: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    session_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "user_message": self.user_message,
            "ai_response": self.ai_response,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatEntry:
        return cls(
            timestamp=parse_ts(data.get("timestamp")) or datetime.now(timezone.utc),
            user_message=data.get("user_message", ""),
            ai_response=data.get("ai_response", ""),
            tool_calls=[ToolCallRecord.from_dict(tc) for tc in data.get("tool_calls") or []],
            session_id=str(data.get("session_id", "")),
        )


@dataclass
class AutonomousLogEntry:
    timestamp: datetime
    action: str
    reasoning: str
    tool_calls: list[ToolCallRecord]
    result: str
    execution_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_ts(self.timestamp),
            "action": self.action,
            "reasoning": self.reasoning,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "result": self.result,
            "execution_id": self.execution_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutonomousLogEntry:
        return cls(
            timestamp=parse_ts(data.get("timestamp")) or datetime.now(timezone.utc),
            action=data.get("action", ""),
            reasoning=data.get("reasoning", ""),
            tool_calls=[ToolCallRecord.from_dict(tc) for tc in data.get("tool_calls") or []],
            result=data.get("result", ""),
            execution_id=data.get("execution_id", ""),
        )
