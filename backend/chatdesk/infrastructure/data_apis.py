"""Data API Clients — weather, motorsport standings, and equity quotes over httpx.

Invariants:
    - Every HTTP fetch runs inside with_retry (exponential backoff); exhaustion
      surfaces as EXTERNAL_API_ERROR with the attempt count
    - Missing API keys raise API_UNAVAILABLE before any request is made
    - Payloads are reduced to small flat dicts before reaching the model
    - Unknown locations or symbols raise RECORD_NOT_FOUND (not retried)

Design Decisions:
    - One short-lived AsyncClient per call: no connection lifecycle to manage
    - transport injectable: tests use httpx.MockTransport, no network
    - Parsing happens outside the retry loop so a bad symbol costs one request
"""

import logging
from typing import Any

import httpx

from chatdesk.core.errors import ApiUnavailableError, RecordNotFoundError
from chatdesk.core.retry import with_retry

logger = logging.getLogger(__name__)

STANDINGS_KINDS = ("drivers", "constructors")
MAX_STANDINGS_ROWS = 10


class DataApiClient:
    """Thin adapters over the three data APIs the chat tools expose."""

    def __init__(
        self,
        *,
        openweather_api_key: str = "",
        openweather_base_url: str = "https://api.openweathermap.org/data/2.5",
        alphavantage_api_key: str = "",
        alphavantage_base_url: str = "https://www.alphavantage.co",
        motorsport_base_url: str = "https://api.jolpi.ca/ergast/f1",
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=None,
    ):
        self.openweather_api_key = openweather_api_key
        self.openweather_base_url = openweather_base_url.rstrip("/")
        self.alphavantage_api_key = alphavantage_api_key
        self.alphavantage_base_url = alphavantage_base_url.rstrip("/")
        self.motorsport_base_url = motorsport_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "DataApiClient":
        return cls(
            openweather_api_key=settings.openweather_api_key,
            openweather_base_url=settings.openweather_base_url,
            alphavantage_api_key=settings.alphavantage_api_key,
            alphavantage_base_url=settings.alphavantage_base_url,
            motorsport_base_url=settings.motorsport_base_url,
            timeout_seconds=settings.data_api_timeout_seconds,
            retry_attempts=settings.tool_retry_attempts,
            retry_base_delay=settings.tool_retry_base_delay_seconds,
        )

    # -- Weather ---------------------------------------------------------------

    async def get_weather(self, location: str, units: str = "metric") -> dict:
        if not self.openweather_api_key:
            raise ApiUnavailableError("Weather service", "Weather service is not configured")
        payload = await self._get_json(
            f"{self.openweather_base_url}/weather",
            {"q": location, "appid": self.openweather_api_key, "units": units},
            not_found=("location", location),
        )
        main = payload.get("main", {})
        weather = (payload.get("weather") or [{}])[0]
        return {
            "location": payload.get("name", location),
            "country": payload.get("sys", {}).get("country"),
            "temperature": main.get("temp"),
            "feels_like": main.get("feels_like"),
            "humidity": main.get("humidity"),
            "conditions": weather.get("description"),
            "wind_speed": payload.get("wind", {}).get("speed"),
            "units": units,
        }

    # -- Motorsport ------------------------------------------------------------

    async def get_motorsport_standings(
        self, kind: str = "drivers", season: str = "current",
    ) -> dict:
        path = "driverStandings" if kind == "drivers" else "constructorStandings"
        payload = await self._get_json(
            f"{self.motorsport_base_url}/{season}/{path}.json", {},
            not_found=("season", season),
        )
        lists = (
            payload.get("MRData", {})
            .get("StandingsTable", {})
            .get("StandingsLists", [])
        )
        if not lists:
            raise RecordNotFoundError("season", season)
        table = lists[0]
        if kind == "drivers":
            rows = [_driver_row(r) for r in table.get("DriverStandings", [])]
        else:
            rows = [_constructor_row(r) for r in table.get("ConstructorStandings", [])]
        return {
            "season": table.get("season", season),
            "round": table.get("round"),
            "kind": kind,
            "standings": rows[:MAX_STANDINGS_ROWS],
        }

    # -- Equities --------------------------------------------------------------

    async def get_stock_quote(self, symbol: str) -> dict:
        if not self.alphavantage_api_key:
            raise ApiUnavailableError("Stock quote service", "Stock quote service is not configured")
        payload = await self._get_json(
            f"{self.alphavantage_base_url}/query",
            {
                "function": "GLOBAL_QUOTE",
                "symbol": symbol,
                "apikey": self.alphavantage_api_key,
            },
            throttled_keys=("Note", "Information"),
        )
        quote = payload.get("Global Quote") or {}
        if not quote:
            raise RecordNotFoundError("symbol", symbol)
        return {
            "symbol": quote.get("01. symbol", symbol),
            "price": _to_float(quote.get("05. price")),
            "change": _to_float(quote.get("09. change")),
            "change_percent": quote.get("10. change percent"),
            "volume": quote.get("06. volume"),
            "latest_trading_day": quote.get("07. latest trading day"),
        }

    # -- Transport -------------------------------------------------------------

    async def _get_json(
        self, url: str, params: dict,
        not_found: tuple[str, str] | None = None,
        throttled_keys: tuple[str, ...] = (),
    ) -> dict:
        """GET url with retries. 404 short-circuits to RECORD_NOT_FOUND."""
        missing = False

        async def fetch() -> dict:
            nonlocal missing
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout_seconds,
            ) as client:
                response = await client.get(url, params=params)
            if response.status_code == 404 and not_found:
                missing = True
                return {}
            response.raise_for_status()
            body = response.json()
            for key in throttled_keys:
                if key in body:
                    raise RuntimeError(f"Upstream throttled: {body[key]}")
            return body

        kwargs: dict[str, Any] = {
            "max_attempts": self.retry_attempts,
            "base_delay": self.retry_base_delay,
        }
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        payload = await with_retry(fetch, **kwargs)
        if missing:
            raise RecordNotFoundError(*not_found)
        return payload


def _driver_row(row: dict) -> dict:
    driver = row.get("Driver", {})
    teams = row.get("Constructors") or [{}]
    return {
        "position": int(row.get("position", 0)),
        "driver": f"{driver.get('givenName', '')} {driver.get('familyName', '')}".strip(),
        "team": teams[0].get("name"),
        "points": _to_float(row.get("points")),
        "wins": int(row.get("wins", 0)),
    }


def _constructor_row(row: dict) -> dict:
    return {
        "position": int(row.get("position", 0)),
        "team": row.get("Constructor", {}).get("name"),
        "points": _to_float(row.get("points")),
        "wins": int(row.get("wins", 0)),
    }


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
