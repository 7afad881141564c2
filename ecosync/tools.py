"""Tool registry and the chat agent's tool catalog.

A tool is a ``ToolSpec``: name, description, JSON-Schema parameters and an
async handler. ``ToolRegistry`` validates the catalog when it is built and
executes calls. Every execution yields a ``ToolOutcome``; unknown tools,
missing required arguments and handler exceptions become ``{error}``
results instead of exceptions.

Definitions use the OpenAI function-calling format; providers convert them.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

import httpx

from ecosync.config import EcoSyncSettings
from ecosync.cost import breakdown, cost
from ecosync.errors import ErrorKind, StorageError, error_result
from ecosync.external import NewsClient, WeatherClient
from ecosync.household import ModeStore, ProfileStore
from ecosync.ledger import ApplianceLedger
from ecosync.llm.base import ToolDefinition
from ecosync.models import CreatedBy, Mode, Routine, RoutineAction, Schedule, Trigger, WEEKDAYS
from ecosync.projection import project
from ecosync.routines import RoutineStore, new_routine_id
from ecosync.safety import find_anomalies, maintenance_alerts
from ecosync.usage_log import UsageLog
from shared.log import get_logger

logger = get_logger("tools")

Handler = Callable[..., Awaitable[Any]]
# Maps call arguments to the (appliance uid, target state) pairs it would set
EffectsFn = Callable[[dict[str, Any]], list[tuple[str, str]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: Handler
    effects: EffectsFn | None = None

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def definition(self) -> ToolDefinition:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolOutcome:
    result: Any
    error: bool
    exec_ms: int


def _accepts(handler: Handler, param: str) -> bool:
    params = inspect.signature(handler).parameters
    return param in params or any(p.kind == inspect.Parameter.VAR_KEYWORD for p in params.values())


class ToolRegistry:
    """Catalog of tools, validated at construction."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            for param in spec.required:
                if not _accepts(spec.handler, param):
                    raise ValueError(f"Tool {spec.name}: handler does not accept required '{param}'")
            self._specs[spec.name] = spec

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def names(self) -> list[str]:
        return list(self._specs)

    def definitions(self) -> list[ToolDefinition]:
        return [spec.definition() for spec in self._specs.values()]

    def effects(self, name: str, arguments: dict[str, Any]) -> list[tuple[str, str]]:
        spec = self._specs.get(name)
        if spec is None or spec.effects is None:
            return []
        try:
            return spec.effects(arguments)
        except Exception:
            logger.exception("tool_effects_failed", tool=name)
            return []

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolOutcome:
        start = time.monotonic()
        result = await self._run(name, arguments or {})
        exec_ms = int((time.monotonic() - start) * 1000)
        is_error = isinstance(result, dict) and "error" in result
        logger.info("tool_call", tool=name, exec_ms=exec_ms, error=is_error)
        return ToolOutcome(result=result, error=is_error, exec_ms=exec_ms)

    async def _run(self, name: str, arguments: dict[str, Any]) -> Any:
        spec = self._specs.get(name)
        if spec is None:
            return error_result(f"Tool {name} not found.", ErrorKind.UNKNOWN_TOOL)

        missing = [p for p in spec.required if arguments.get(p) is None]
        if missing:
            return error_result(
                f"Missing required argument(s) for {name}: {', '.join(missing)}",
                ErrorKind.INVALID_ARGUMENT,
            )

        # Models sometimes hallucinate parameters the handler doesn't take
        params = inspect.signature(spec.handler).parameters
        if not any(p.kind == inspect.Parameter.VAR_KEYWORD for p in params.values()):
            filtered = {k: v for k, v in arguments.items() if k in params}
            if len(filtered) != len(arguments):
                logger.warning("tool_args_filtered", tool=name, dropped=sorted(set(arguments) - set(params)))
            arguments = filtered

        try:
            return await spec.handler(**arguments)
        except StorageError as exc:
            logger.error("tool_storage_failed", tool=name, error=str(exc))
            return error_result(str(exc), ErrorKind.STORAGE_FAILURE)
        except Exception as exc:
            logger.exception("tool_execution_error", tool=name)
            return error_result(str(exc))


def build_specs(
    owner: Any,
    definitions: list[dict[str, Any]],
) -> list[ToolSpec]:
    """Bind ``_tool_<name>`` (and optional ``_effects_<name>``) methods of ``owner``."""
    specs = []
    for definition in definitions:
        name = definition["name"]
        specs.append(
            ToolSpec(
                name=name,
                description=definition["description"],
                parameters=definition.get("parameters", {"type": "object", "properties": {}}),
                handler=getattr(owner, f"_tool_{name}"),
                effects=getattr(owner, f"_effects_{name}", None),
            )
        )
    return specs


# ------------------------------------------------------------------
# Chat tool definitions
# ------------------------------------------------------------------

_NO_ARGS: dict[str, Any] = {"type": "object", "properties": {}}

CHAT_TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "detect_anomalies",
        "description": "Find appliances that have been running for an unusually long time.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "check_appliance_maintenance",
        "description": "List appliances whose accumulated usage suggests maintenance is due.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "get_weather_data",
        "description": "Current weather at the household's location.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "get_top_news_headlines",
        "description": "Top five news headlines for the household's country.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "get_user_and_appliances_data",
        "description": (
            "The household profile (name, monthly budget, location), the operating mode "
            "and every appliance with its state, rating and accumulated usage."
        ),
        "parameters": _NO_ARGS,
    },
    {
        "name": "read_usage_logs",
        "description": "Completed on/off sessions, newest first, with appliance names.",
        "parameters": {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Maximum entries (default 100)."},
                "appliance_name": {"type": "string", "description": "Only sessions of this appliance."},
            },
        },
    },
    {
        "name": "calculate_usage_cost",
        "description": "Tiered electricity cost for a number of kWh, with a per-tier breakdown.",
        "parameters": {
            "type": "object",
            "properties": {"units_kwh": {"type": "number", "description": "Energy in kWh."}},
            "required": ["units_kwh"],
        },
    },
    {
        "name": "calculate_intelligent_projection",
        "description": (
            "Project month-end usage and cost from usage patterns (weekday/weekend, "
            "outliers, trend, season) instead of a simple average."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "current_usage_kwh": {"type": "number", "description": "Usage so far this month."},
                "current_cost": {"type": "number", "description": "Cost so far this month."},
                "days_passed": {"type": "integer", "description": "Days elapsed this month."},
                "monthly_budget": {"type": "number", "description": "Monthly budget."},
            },
            "required": ["current_usage_kwh", "current_cost", "days_passed", "monthly_budget"],
        },
    },
    {
        "name": "find_and_control_appliances",
        "description": (
            "Turn appliances on or off, selected by (partial) names or by type. "
            "Use appliance_type 'all' for every appliance."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "new_state": {"type": "string", "enum": ["on", "off"]},
                "appliance_names": {"type": "array", "items": {"type": "string"}},
                "appliance_type": {"type": "string"},
            },
            "required": ["new_state"],
        },
    },
    {
        "name": "modify_appliance_details",
        "description": (
            "Change descriptive fields of an appliance: name, priority_level, "
            "max_on_duration_minutes (0 = unlimited), description, location."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "appliance_name": {"type": "string"},
                "updates": {
                    "type": "object",
                    "description": "Field/value pairs to change.",
                    "properties": {
                        "name": {"type": "string"},
                        "priority_level": {"type": "integer"},
                        "max_on_duration_minutes": {"type": "number"},
                        "description": {"type": "string"},
                        "location": {"type": "string"},
                    },
                },
            },
            "required": ["appliance_name", "updates"],
        },
    },
    {
        "name": "add_appliance",
        "description": "Register a new appliance (starts switched off).",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "type": {"type": "string", "description": "e.g. Air Conditioner, Fan, Light"},
                "power_rating_kwh_per_hour": {"type": "number"},
                "description": {"type": "string"},
                "location": {"type": "string"},
            },
            "required": ["name", "type", "power_rating_kwh_per_hour"],
        },
    },
    {
        "name": "manage_routines",
        "description": "Create and/or delete scheduled routines.",
        "parameters": {
            "type": "object",
            "properties": {
                "routines_to_create": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "appliance_name": {"type": "string"},
                            "command": {"type": "string", "enum": ["turnOn", "turnOff"]},
                            "time": {"type": "string", "description": "HH:MM, 24h local time"},
                            "days": {"type": "array", "items": {"type": "string"}},
                            "description": {"type": "string"},
                        },
                        "required": ["name", "appliance_name", "command", "time", "days"],
                    },
                },
                "routine_names_to_delete": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
    {
        "name": "list_routines",
        "description": "All scheduled routines.",
        "parameters": _NO_ARGS,
    },
    {
        "name": "set_power_saving_mode",
        "description": (
            "Switch the operating mode. Clears routines previously created by the "
            "assistant and returns fresh household and usage data for re-planning."
        ),
        "parameters": {
            "type": "object",
            "properties": {"mode": {"type": "string", "enum": [m.value for m in Mode]}},
            "required": ["mode"],
        },
    },
]


def valid_time(value: str) -> bool:
    try:
        datetime.strptime(value, "%H:%M")
    except (TypeError, ValueError):
        return False
    return len(value) == 5


def normalize_days(days: Any) -> list[str] | None:
    if isinstance(days, str):
        days = [days]
    if not isinstance(days, list) or not days:
        return None
    lookup = {d.lower(): d for d in WEEKDAYS}
    normalized = []
    for day in days:
        key = str(day).strip().lower()
        if key in ("daily", "everyday", "every day"):
            return list(WEEKDAYS)
        if key not in lookup:
            return None
        normalized.append(lookup[key])
    return normalized


class ChatTools:
    """Tool bodies for the chat agent."""

    def __init__(
        self,
        ledger: ApplianceLedger,
        usage_log: UsageLog,
        routines: RoutineStore,
        profiles: ProfileStore,
        modes: ModeStore,
        settings: EcoSyncSettings,
        weather: WeatherClient | None = None,
        news: NewsClient | None = None,
    ) -> None:
        self.ledger = ledger
        self.usage_log = usage_log
        self.routines = routines
        self.profiles = profiles
        self.modes = modes
        self.settings = settings
        self.weather = weather
        self.news = news

    def registry(self) -> ToolRegistry:
        return ToolRegistry(build_specs(self, CHAT_TOOL_DEFINITIONS))

    # ------------------------------------------------------------------
    # Shared views
    # ------------------------------------------------------------------

    def home_snapshot(self) -> dict[str, Any]:
        profile = self.profiles.get()
        return {
            "user": {
                "name": profile.name,
                "monthly_budget": profile.monthly_budget,
                "location": profile.location,
            },
            "mode": self.modes.get().value,
            "appliances": [a.to_dict() for a in self.ledger.all()],
        }

    def enriched_usage_logs(self, limit: int = 100, appliance_id: str | None = None) -> list[dict[str, Any]]:
        names = {a.uid: a.name for a in self.ledger.all()}
        return [
            {**entry.to_dict(), "appliance_name": names.get(entry.appliance_id, "Unknown Appliance")}
            for entry in self.usage_log.recent(limit, appliance_id=appliance_id)
        ]

    # ------------------------------------------------------------------
    # Tool implementations
    # ------------------------------------------------------------------

    async def _tool_detect_anomalies(self) -> dict[str, Any]:
        anomalies = find_anomalies(
            self.ledger.all(), self.ledger.clock(), self.settings.anomaly_threshold_hours
        )
        if not anomalies:
            return {"status": "No anomalies detected. All appliance usage seems normal."}
        return {"anomalies_detected": anomalies}

    async def _tool_check_appliance_maintenance(self) -> dict[str, Any]:
        alerts = maintenance_alerts(self.ledger.all(), self.settings.maintenance_thresholds)
        if not alerts:
            return {"status": "All appliances are within their maintenance schedules."}
        return {"maintenance_alerts": alerts}

    async def _tool_get_weather_data(self) -> dict[str, Any]:
        if self.weather is None or not self.weather.configured:
            return error_result("Weather API key is not configured.", ErrorKind.UPSTREAM_FAILURE)
        location = self.profiles.get().location
        if not location:
            return error_result("Household location is not set.", ErrorKind.INVALID_ARGUMENT)
        try:
            return await self.weather.get_current(location)
        except httpx.HTTPError as exc:
            logger.warning("weather_fetch_failed", error=str(exc))
            return error_result("Failed to fetch weather data.", ErrorKind.UPSTREAM_FAILURE)

    async def _tool_get_top_news_headlines(self) -> dict[str, Any]:
        if self.news is None or not self.news.configured:
            return error_result("News API key is not configured.", ErrorKind.UPSTREAM_FAILURE)
        country = self.profiles.get().country_code
        if not country:
            return error_result("Household country code is not set.", ErrorKind.INVALID_ARGUMENT)
        try:
            return {"headlines": await self.news.get_top_headlines(country)}
        except httpx.HTTPError as exc:
            logger.warning("news_fetch_failed", error=str(exc))
            return error_result("Failed to fetch news headlines.", ErrorKind.UPSTREAM_FAILURE)

    async def _tool_get_user_and_appliances_data(self) -> dict[str, Any]:
        return self.home_snapshot()

    async def _tool_read_usage_logs(
        self, limit: int = 100, appliance_name: str | None = None
    ) -> dict[str, Any]:
        appliance_id = None
        if appliance_name:
            appliance = self.ledger.find_by_name(appliance_name)
            if appliance is None:
                return error_result(f"No appliance named '{appliance_name}'.", ErrorKind.NOT_FOUND)
            appliance_id = appliance.uid
        logs = self.enriched_usage_logs(int(limit), appliance_id)
        return {"count": len(logs), "usage_logs": logs}

    async def _tool_calculate_usage_cost(self, units_kwh: float) -> dict[str, Any]:
        units = float(units_kwh)
        if units <= 0:
            return {"total_cost": 0.0, "message": "No units consumed, cost is zero."}
        return {"total_cost": cost(units, self.settings.tiers), "breakdown": breakdown(units, self.settings.tiers)}

    async def _tool_calculate_intelligent_projection(
        self,
        current_usage_kwh: float,
        current_cost: float,
        days_passed: int,
        monthly_budget: float,
    ) -> dict[str, Any]:
        return project(
            self.usage_log.entries(),
            current_usage_kwh=float(current_usage_kwh),
            current_cost=float(current_cost),
            days_passed=int(days_passed),
            monthly_budget=float(monthly_budget),
            now=self.ledger.clock(),
            appliances=self.ledger.all(),
            tz=self.settings.timezone,
            tiers=self.settings.tiers,
        )

    def _effects_find_and_control_appliances(self, arguments: dict[str, Any]) -> list[tuple[str, str]]:
        state = str(arguments.get("new_state", "")).strip().lower()
        targets = self.ledger.find(arguments.get("appliance_names"), arguments.get("appliance_type"))
        return [(a.uid, state) for a in targets]

    async def _tool_find_and_control_appliances(
        self,
        new_state: str,
        appliance_names: list[str] | str | None = None,
        appliance_type: str | None = None,
    ) -> dict[str, Any]:
        state = str(new_state).strip().lower()
        if state not in ("on", "off"):
            return error_result(f"Invalid state '{new_state}'. Use 'on' or 'off'.", ErrorKind.INVALID_ARGUMENT)
        targets = self.ledger.find(appliance_names, appliance_type)
        if not targets:
            return error_result(
                "Cannot execute action. No appliances match the request.", ErrorKind.NOT_FOUND
            )

        results = [self.ledger.set_state(a.uid, state, Trigger.AI) for a in targets]
        changed = [r.appliance.name for r in results if r.success and r.appliance]
        failed = [{"uid": a.uid, "name": a.name, "error": r.message} for a, r in zip(targets, results) if not r.success]
        response: dict[str, Any] = {
            "success": not failed,
            "message": f"Turned {state} {len(changed)} appliance(s): {', '.join(changed)}.",
            "results": [r.to_dict() for r in results],
        }
        if failed:
            response["failed"] = failed
        return response

    async def _tool_modify_appliance_details(self, appliance_name: str, updates: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(updates, dict):
            return error_result("updates must be an object.", ErrorKind.INVALID_ARGUMENT)
        exact = [a for a in self.ledger.all() if a.name.lower() == appliance_name.strip().lower()]
        appliance = exact[0] if exact else self.ledger.find_by_name(appliance_name)
        if appliance is None:
            return error_result(f"Could not find an appliance named '{appliance_name}'.", ErrorKind.NOT_FOUND)
        return self.ledger.update_details(appliance.uid, updates).to_dict()

    async def _tool_add_appliance(
        self,
        name: str,
        type: str,
        power_rating_kwh_per_hour: float,
        description: str = "",
        location: str = "",
    ) -> dict[str, Any]:
        return self.ledger.add_appliance(name, type, power_rating_kwh_per_hour, description, location).to_dict()

    async def _tool_manage_routines(
        self,
        routines_to_create: list[dict[str, Any]] | None = None,
        routine_names_to_delete: list[str] | None = None,
    ) -> dict[str, Any]:
        deleted = self.routines.delete_by_names(routine_names_to_delete or [])

        created: list[str] = []
        skipped: list[dict[str, str]] = []
        for spec in routines_to_create or []:
            name = str(spec.get("name", "")).strip()
            command = spec.get("command")
            time_str = str(spec.get("time", ""))
            days = normalize_days(spec.get("days"))
            appliance = self.ledger.find_by_name(str(spec.get("appliance_name", "")))

            reason = None
            if not name:
                reason = "missing name"
            elif appliance is None:
                reason = f"no appliance matching '{spec.get('appliance_name')}'"
            elif command not in ("turnOn", "turnOff"):
                reason = f"invalid command '{command}'"
            elif not valid_time(time_str):
                reason = f"invalid time '{time_str}'"
            elif days is None:
                reason = f"invalid days {spec.get('days')!r}"
            if reason:
                skipped.append({"name": name, "reason": reason})
                continue

            verb = "on" if command == "turnOn" else "off"
            self.routines.add(
                Routine(
                    id=new_routine_id(),
                    name=name,
                    description=spec.get("description") or f"Turns {verb} the {appliance.name}.",
                    schedule=Schedule(time=time_str, days=days),
                    actions=[RoutineAction(appliance_id=appliance.uid, command=command)],
                    created_by=CreatedBy.AI,
                    created_at=self.ledger.clock(),
                )
            )
            created.append(name)

        result: dict[str, Any] = {
            "success": True,
            "message": f"Created {len(created)} and deleted {len(deleted)} routine(s).",
            "created": created,
            "deleted": deleted,
        }
        if skipped:
            result["skipped"] = skipped
        return result

    async def _tool_list_routines(self) -> dict[str, Any]:
        names = {a.uid: a.name for a in self.ledger.all()}
        routines = []
        for routine in self.routines.all():
            data = routine.to_dict()
            for action in data["actions"]:
                action["appliance_name"] = names.get(action["appliance_id"], "Unknown Appliance")
            routines.append(data)
        return {"routines": routines}

    async def _tool_set_power_saving_mode(self, mode: str) -> dict[str, Any]:
        try:
            selected = Mode(str(mode).strip().lower())
        except ValueError:
            return error_result(
                f"Invalid mode. Choose from: {', '.join(m.value for m in Mode)}.",
                ErrorKind.INVALID_ARGUMENT,
            )
        self.modes.set(selected)
        cleared = self.routines.remove_created_by(CreatedBy.AI)
        return {
            "success": True,
            "message": f"Mode set to '{selected.value}'. Cleared {cleared} assistant routine(s).",
            "analysis_data": {**self.home_snapshot(), "usage_logs": self.enriched_usage_logs()},
        }
