"""Read-only external data: current weather and top news headlines.

Usage:
    weather = WeatherClient(api_key="...")
    current = await weather.get_current("Pune")

Both clients raise ``httpx.HTTPError`` on transport or status failures after
their retries are exhausted. The tool layer turns that into an ``{error}``
result for the current tool only.
"""

from __future__ import annotations

from typing import Any

import httpx

from shared.log import get_logger
from shared.retry import async_retry

logger = get_logger("external")


def _transient(exc: BaseException) -> bool:
    """Transport errors, 429 and 5xx are worth another try; other 4xx are not."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return True


class _HttpClient:
    def __init__(self, timeout: float = 10.0, max_retries: int = 2) -> None:
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        async def _fetch() -> Any:
            client = await self._get_client()
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()

        return await async_retry(
            max_retries=self._max_retries,
            base_delay=1.0,
            exceptions=(httpx.HTTPError,),
            retry_if=_transient,
        )(_fetch)()


class WeatherClient(_HttpClient):
    """weatherapi.com current conditions."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://api.weatherapi.com/v1/current.json",
        timeout: float = 10.0,
        max_retries: int = 2,
    ) -> None:
        super().__init__(timeout, max_retries)
        self.api_key = api_key
        self.url = url

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_current(self, location: str) -> dict[str, Any]:
        data = await self._get_json(self.url, {"key": self.api_key, "q": location})
        current = data.get("current", {})
        result = {
            "location": data.get("location", {}).get("name", location),
            "temperature_celsius": current.get("temp_c"),
            "condition": current.get("condition", {}).get("text", ""),
            "humidity_percent": current.get("humidity"),
        }
        logger.debug("weather_fetched", location=result["location"])
        return result


class NewsClient(_HttpClient):
    """newsapi.org top headlines."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://newsapi.org/v2/top-headlines",
        timeout: float = 10.0,
        max_retries: int = 2,
    ) -> None:
        super().__init__(timeout, max_retries)
        self.api_key = api_key
        self.url = url

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_top_headlines(self, country_code: str, page_size: int = 5) -> list[dict[str, str]]:
        data = await self._get_json(
            self.url,
            {"country": country_code, "apiKey": self.api_key, "pageSize": page_size},
        )
        return [
            {
                "title": article.get("title", ""),
                "source": (article.get("source") or {}).get("name", ""),
            }
            for article in data.get("articles", [])
        ]
