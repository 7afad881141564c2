"""Tool catalog of the autonomous agent.

The autonomous agent shares the orchestration loop with the chat agent but
sees its own tools: broad analysis views plus routine creation and
appliance control. Appliance control goes through the ledger like every
other caller, with trigger ``autonomous_ai``.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import timedelta
from typing import Any
from zoneinfo import ZoneInfo

from ecosync.chat_history import ChatHistory
from ecosync.config import EcoSyncSettings
from ecosync.cost import cost
from ecosync.errors import ErrorKind, error_result
from ecosync.household import ProfileStore
from ecosync.ledger import ApplianceLedger
from ecosync.models import CreatedBy, Routine, RoutineAction, Schedule, Trigger
from ecosync.routines import RoutineStore, new_routine_id
from ecosync.tools import ToolRegistry, build_specs, normalize_days, valid_time
from ecosync.usage_log import UsageLog
from shared.log import get_logger

logger = get_logger("autonomous-tools")

HIGH_USAGE_KWH = 10.0
SAVING_FRACTION = 0.2
ENERGY_WORDS = ("save", "energy", "cost", "bill")
COMFORT_WORDS = ("hot", "cold", "warm", "cool")

AUTONOMOUS_TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "analyze_home_data",
        "description": (
            "Appliances, routines, 7-day per-appliance usage statistics, the profile and "
            "preferences inferred from recent chat."
        ),
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "create_autonomous_routine",
        "description": "Create a routine from your analysis. Rejected if a similarly named routine exists.",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "description": {"type": "string"},
                "schedule": {
                    "type": "object",
                    "properties": {
                        "time": {"type": "string", "description": "HH:MM"},
                        "days": {"type": "array", "items": {"type": "string"}},
                    },
                },
                "actions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "appliance_id": {"type": "string"},
                            "command": {"type": "string", "enum": ["turnOn", "turnOff"]},
                        },
                    },
                },
                "reasoning": {"type": "string", "description": "Why this routine helps."},
            },
            "required": ["name", "schedule", "actions", "reasoning"],
        },
    },
    {
        "name": "autonomous_appliance_control",
        "description": "Turn one appliance on or off, with the reasoning behind it.",
        "parameters": {
            "type": "object",
            "properties": {
                "appliance_id": {"type": "string"},
                "action": {"type": "string", "enum": ["turnOn", "turnOff"]},
                "reasoning": {"type": "string"},
            },
            "required": ["appliance_id", "action", "reasoning"],
        },
    },
    {
        "name": "analyze_energy_optimization",
        "description": "30-day energy per appliance and saving opportunities for heavy consumers.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": "manage_existing_routines",
        "description": "List, delete or modify routines. Routine ids cannot be changed.",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["list", "delete", "modify"]},
                "routine_id": {"type": "string", "description": "Required for delete/modify."},
                "modifications": {
                    "type": "object",
                    "description": "Fields to change: name, description, schedule, actions.",
                },
            },
            "required": ["action"],
        },
    },
    {
        "name": "analyze_user_patterns",
        "description": "Behaviour patterns from recent chat: appliance mentions, times of day, interests.",
        "parameters": {"type": "object", "properties": {}},
    },
]


def _time_slot(hour: int) -> str:
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def _command_state(command: str) -> str | None:
    lowered = command.strip().lower()
    if lowered == "turnon":
        return "on"
    if lowered == "turnoff":
        return "off"
    return None


class AutonomousTools:
    def __init__(
        self,
        ledger: ApplianceLedger,
        usage_log: UsageLog,
        routines: RoutineStore,
        profiles: ProfileStore,
        chat_history: ChatHistory,
        settings: EcoSyncSettings,
    ) -> None:
        self.ledger = ledger
        self.usage_log = usage_log
        self.routines = routines
        self.profiles = profiles
        self.chat_history = chat_history
        self.settings = settings
        self._tz = ZoneInfo(settings.timezone)

    def registry(self) -> ToolRegistry:
        return ToolRegistry(build_specs(self, AUTONOMOUS_TOOL_DEFINITIONS))

    # ------------------------------------------------------------------
    # Tool implementations
    # ------------------------------------------------------------------

    async def _tool_analyze_home_data(self) -> dict[str, Any]:
        now = self.ledger.clock()
        appliances = self.ledger.all()
        recent_logs = self.usage_log.since(now - timedelta(days=7))
        chats = self.chat_history.recent(50)

        stats: dict[str, Any] = {}
        for appliance in appliances:
            logs = [e for e in recent_logs if e.appliance_id == appliance.uid]
            seconds = sum(e.duration_seconds for e in logs)
            stats[appliance.uid] = {
                "name": appliance.name,
                "type": appliance.type,
                "usage_hours_7d": round(seconds / 3600, 2),
                "energy_kwh_7d": round(sum(e.energy_kwh for e in logs), 4),
                "sessions_7d": len(logs),
                "avg_session_hours": round(seconds / len(logs) / 3600, 2) if logs else 0.0,
                "state": appliance.state.value,
                "power_rating_kwh_per_hour": appliance.power_rating_kwh_per_hour,
            }

        mentioned: Counter[str] = Counter()
        for chat in chats:
            text = chat.user_message.lower()
            for appliance in appliances:
                if appliance.name.lower() in text or appliance.type.lower() in text:
                    mentioned[appliance.uid] += 1

        return {
            "appliances": [a.to_dict() for a in appliances],
            "routines": [r.to_dict() for r in self.routines.all()],
            "appliance_stats": stats,
            "user_preferences": {
                "mentioned_appliances": dict(mentioned),
                "energy_saving_interest": any(
                    w in c.user_message.lower() for c in chats for w in ENERGY_WORDS
                ),
                "comfort_mentions": [
                    c.user_message for c in chats if any(w in c.user_message.lower() for w in COMFORT_WORDS)
                ],
            },
            "recent_chat_count": len(chats),
            "total_usage_logs": len(self.usage_log.entries()),
            "last_7_days_logs": len(recent_logs),
            "profile": self.profiles.get().to_dict(),
        }

    async def _tool_create_autonomous_routine(
        self,
        name: str,
        schedule: dict[str, Any],
        actions: list[dict[str, Any]],
        reasoning: str,
        description: str = "",
    ) -> dict[str, Any]:
        name = str(name).strip()
        if not name or not isinstance(schedule, dict) or not isinstance(actions, list) or not actions:
            return error_result("name, schedule and a non-empty actions list are required.", ErrorKind.INVALID_ARGUMENT)

        lowered = name.lower()
        for existing in self.routines.all():
            other = existing.name.lower()
            if lowered in other or other in lowered:
                return error_result(
                    f"Similar routine already exists: {existing.name}",
                    ErrorKind.CONFLICT,
                    existing_routine=existing.to_dict(),
                )

        time_str = str(schedule.get("time", ""))
        days = normalize_days(schedule.get("days"))
        if not valid_time(time_str) or days is None:
            return error_result(
                f"Invalid schedule {schedule!r}. Use HH:MM and weekday names.", ErrorKind.INVALID_ARGUMENT
            )
        parsed_actions = [RoutineAction.from_dict(a) for a in actions if isinstance(a, dict)]
        bad_commands = [a.command for a in parsed_actions if _command_state(a.command) is None]
        if bad_commands:
            return error_result(
                f"Invalid command(s): {', '.join(bad_commands)}. Use turnOn or turnOff.", ErrorKind.INVALID_ARGUMENT
            )
        unknown = [a.appliance_id for a in parsed_actions if self.ledger.get(a.appliance_id) is None]
        if unknown:
            return error_result(f"Unknown appliance id(s): {', '.join(unknown)}", ErrorKind.NOT_FOUND)

        routine = self.routines.add(
            Routine(
                id=new_routine_id(),
                name=name,
                description=description or f"Autonomous routine: {name}",
                schedule=Schedule(time=time_str, days=days),
                actions=parsed_actions,
                created_by=CreatedBy.AUTONOMOUS_AI,
                created_at=self.ledger.clock(),
                reasoning=reasoning,
            )
        )
        return {"success": True, "message": f"Created autonomous routine: {name}", "routine": routine.to_dict()}

    def _effects_autonomous_appliance_control(self, arguments: dict[str, Any]) -> list[tuple[str, str]]:
        state = _command_state(str(arguments.get("action", "")))
        appliance_id = arguments.get("appliance_id")
        return [(str(appliance_id), state)] if state and appliance_id else []

    async def _tool_autonomous_appliance_control(
        self, appliance_id: str, action: str, reasoning: str
    ) -> dict[str, Any]:
        state = _command_state(action)
        if state is None:
            return error_result(f"Invalid action '{action}'. Use turnOn or turnOff.", ErrorKind.INVALID_ARGUMENT)
        result = self.ledger.set_state(appliance_id, state, Trigger.AUTONOMOUS_AI)
        if result.success:
            logger.info("autonomous_control", uid=appliance_id, state=state, reasoning=reasoning)
        return {**result.to_dict(), "reasoning": reasoning}

    async def _tool_analyze_energy_optimization(self) -> dict[str, Any]:
        now = self.ledger.clock()
        energy = self.usage_log.energy_by_appliance(now - timedelta(days=30))
        hours: Counter[str] = Counter()
        for entry in self.usage_log.since(now - timedelta(days=30)):
            hours[entry.appliance_id] += entry.duration_seconds / 3600

        by_appliance = {
            a.uid: {
                "name": a.name,
                "type": a.type,
                "energy_kwh_30d": round(energy.get(a.uid, 0.0), 4),
                "hours_30d": round(hours[a.uid], 2),
                "average_daily_kwh": round(energy.get(a.uid, 0.0) / 30, 4),
                "power_rating_kwh_per_hour": a.power_rating_kwh_per_hour,
                "state": a.state.value,
            }
            for a in self.ledger.all()
        }
        ranked = sorted(by_appliance.values(), key=lambda row: row["energy_kwh_30d"], reverse=True)

        total_kwh = sum(row["energy_kwh_30d"] for row in ranked)
        # Average rate over the tiers actually reached this month
        rate = cost(total_kwh, self.settings.tiers) / total_kwh if total_kwh > 0 else 0.0
        opportunities = [
            {
                "appliance": row["name"],
                "energy_kwh_30d": row["energy_kwh_30d"],
                "potential_saving_kwh": round(row["energy_kwh_30d"] * SAVING_FRACTION, 4),
                "potential_cost_saving": round(row["energy_kwh_30d"] * SAVING_FRACTION * rate, 2),
                "recommendation": f"Reduce {row['name']} usage by 20% through smart scheduling",
            }
            for row in ranked
            if row["energy_kwh_30d"] > HIGH_USAGE_KWH
        ]
        return {
            "monthly_budget": self.profiles.get().monthly_budget,
            "energy_by_appliance": by_appliance,
            "top_consumers": ranked[:5],
            "optimization_opportunities": opportunities,
            "total_potential_cost_saving": round(sum(o["potential_cost_saving"] for o in opportunities), 2),
            "analysis_date": now.isoformat(),
        }

    async def _tool_manage_existing_routines(
        self,
        action: str,
        routine_id: str | None = None,
        modifications: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        action = str(action).strip().lower()
        if action == "list":
            return {
                "routines": [
                    {
                        "id": r.id,
                        "name": r.name,
                        "description": r.description,
                        "schedule": r.schedule.to_dict(),
                        "created_by": r.created_by.value,
                    }
                    for r in self.routines.all()
                ]
            }
        if action not in ("delete", "modify"):
            return error_result(f"Invalid action '{action}'. Use list, delete or modify.", ErrorKind.INVALID_ARGUMENT)
        if not routine_id:
            return error_result(f"routine_id is required to {action}.", ErrorKind.INVALID_ARGUMENT)

        if action == "delete":
            removed = self.routines.delete(routine_id)
            if removed is None:
                return error_result(f"Routine not found: {routine_id}", ErrorKind.NOT_FOUND)
            return {"success": True, "message": f"Deleted routine: {removed.name}", "deleted_routine": removed.to_dict()}

        if not isinstance(modifications, dict) or not modifications:
            return error_result("modifications are required to modify a routine.", ErrorKind.INVALID_ARGUMENT)
        modified = self.routines.modify(routine_id, modifications)
        if modified is None:
            return error_result(f"Routine not found: {routine_id}", ErrorKind.NOT_FOUND)
        return {"success": True, "message": f"Modified routine: {modified.name}", "modified_routine": modified.to_dict()}

    async def _tool_analyze_user_patterns(self) -> dict[str, Any]:
        chats = self.chat_history.recent(100)
        appliances = self.ledger.all()

        mentions: dict[str, dict[str, Any]] = {}
        time_slots: Counter[str] = Counter()
        tools: Counter[str] = Counter()
        words: Counter[str] = Counter()
        comfort: list[dict[str, Any]] = []
        energy_interest = 0

        for chat in chats:
            text = chat.user_message.lower()
            local = chat.timestamp.astimezone(self._tz)
            slot = _time_slot(local.hour)
            time_slots[slot] += 1

            for appliance in appliances:
                if appliance.name.lower() in text or appliance.type.lower() in text:
                    row = mentions.setdefault(
                        appliance.uid, {"name": appliance.name, "mentions": 0, "time_slots": Counter()}
                    )
                    row["mentions"] += 1
                    row["time_slots"][slot] += 1

            if any(w in text for w in ENERGY_WORDS):
                energy_interest += 1
            if any(w in text for w in COMFORT_WORDS):
                comfort.append({"message": chat.user_message, "timestamp": chat.timestamp.isoformat(), "hour": local.hour})
            for call in chat.tool_calls:
                tools[call.tool_name] += 1
            words.update(w for w in re.findall(r"\w+", text) if len(w) > 3)

        top_mentioned = sorted(mentions.values(), key=lambda row: row["mentions"], reverse=True)[:3]
        if energy_interest > 5:
            interest_level = "high"
        elif energy_interest > 2:
            interest_level = "medium"
        else:
            interest_level = "low"

        return {
            "patterns": {
                "appliance_mentions": {
                    uid: {**row, "time_slots": dict(row["time_slots"])} for uid, row in mentions.items()
                },
                "time_preferences": dict(time_slots),
                "energy_saving_interest": energy_interest,
                "comfort_mentions": comfort,
                "frequent_words": dict(words.most_common(20)),
                "tool_usage": dict(tools),
            },
            "total_chats_analyzed": len(chats),
            "insights": {
                "most_mentioned_appliances": [
                    {"name": row["name"], "mentions": row["mentions"]} for row in top_mentioned
                ],
                "preferred_time_slot": time_slots.most_common(1)[0][0] if time_slots else None,
                "energy_saving_interest_level": interest_level,
            },
        }
