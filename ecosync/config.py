"""EcoSync service configuration.

Extends the shared Settings with fields for the reasoning engine, tool loop
limits, external data APIs, tariff, safety thresholds, retention and
scheduler intervals.
"""

from __future__ import annotations

from shared.config import Settings as BaseSettings


class EcoSyncSettings(BaseSettings):
    # --- LLM provider ---
    llm_provider: str = "gemini"  # gemini | openai | ollama
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    openai_api_key: str = ""
    openai_base_url: str = ""  # empty = api.openai.com
    openai_model: str = "gpt-4o"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 4096

    # --- Orchestration loop limits ---
    llm_max_tool_rounds: int = 10
    llm_max_tool_calls: int = 25  # per turn, across all rounds
    llm_call_timeout_seconds: float = 60.0
    tool_call_timeout_seconds: float = 30.0
    turn_deadline_seconds: float = 180.0
    llm_max_retries: int = 1
    reset_phrase: str = "reset conversation"
    chat_history_window: int = 10  # recent entries replayed as context

    # --- External data ---
    weather_api_key: str = ""
    weather_api_url: str = "https://api.weatherapi.com/v1/current.json"
    news_api_key: str = ""
    news_api_url: str = "https://newsapi.org/v2/top-headlines"
    external_timeout_seconds: float = 10.0
    external_max_retries: int = 2

    # --- Tariff: "units@rate" bands, the last band is open-ended ---
    tariff_tiers: str = "100@3.50,100@5.00,200@6.50,0@8.00"

    # --- Safety ---
    anomaly_threshold_hours: float = 8.0
    maintenance_thresholds: dict[str, float] = {"Air Conditioner": 500.0, "Fan": 1000.0}

    # --- Retention ---
    usage_log_retention: int = 1000
    chat_history_retention: int = 1000
    autonomous_log_retention: int = 500
    store_max_retries: int = 3  # re-apply attempts on version conflict

    # --- Scheduler intervals ---
    routine_interval_seconds: int = 60
    safety_interval_seconds: int = 60
    anomaly_sweep_interval_minutes: int = 15
    autonomous_interval_minutes: int = 60
    dashboard_interval_seconds: int = 60
    suggestions_interval_minutes: int = 60
    enable_autonomous_agent: bool = True
    enable_anomaly_sweep: bool = True

    # --- Household defaults ---
    default_user_name: str = "Home"
    default_monthly_budget: float = 2000.0
    default_location: str = "Pune"
    default_country_code: str = "in"

    @property
    def tiers(self) -> list[tuple[float, float]]:
        """Parse ``tariff_tiers`` into ``(band_units, rate)`` pairs.

        A band of 0 units means "everything beyond the previous bands".
        """
        parsed: list[tuple[float, float]] = []
        for part in self.tariff_tiers.split(","):
            part = part.strip()
            if not part:
                continue
            units, _, rate = part.partition("@")
            parsed.append((float(units), float(rate)))
        return parsed
