"""Tool Dispatch — explicit routing from tool_name to data-API handler.

Invariants:
    - Every tool->handler mapping is visible, no getattr magic
    - Unknown tools return UNKNOWN_TOOL error (never raises)
    - Each call is charged to the user's external_api budget before any fetch;
      over budget returns RATE_LIMITED without touching the network
    - Tool inputs are validated here; failures raise ValidationError for the
      runner's error boundary to turn into a tool result

Design Decisions:
    - Explicit dict over getattr: adding a tool requires editing _handlers
    - Budget keyed by user id, not address: tool calls come from the model,
      many per HTTP request
"""

import logging
import uuid

from chatdesk.core import validators
from chatdesk.core.errors import RateLimitedError, ValidationError
from chatdesk.core.rate_limiter import RateLimiter
from chatdesk.infrastructure.data_apis import DataApiClient, STANDINGS_KINDS
from chatdesk.services.limiters import external_api_key, external_api_limiter

logger = logging.getLogger(__name__)


class ToolDispatch:
    """Routes tool_name -> handler for one user's chat turn."""

    def __init__(
        self, data_client: DataApiClient, user_id: uuid.UUID | str,
        limiter: RateLimiter = external_api_limiter,
    ):
        self._data = data_client
        self._user_id = str(user_id)
        self._limiter = limiter

        self._handlers = {
            "get_weather": self._get_weather,
            "get_motorsport_standings": self._get_motorsport_standings,
            "get_stock_quote": self._get_stock_quote,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, tool_name: str, tool_input: dict) -> dict:
        handler = self._handlers.get(tool_name)
        if handler is None:
            return {
                "status": "error",
                "error_code": "UNKNOWN_TOOL",
                "message": f"Unknown tool: {tool_name}",
            }

        key = external_api_key(self._user_id)
        result = self._limiter.check(key)
        if not result.allowed:
            logger.warning(
                "External tool budget exhausted",
                extra={"user_id": self._user_id, "tool_name": tool_name},
            )
            return RateLimitedError(
                self._limiter.message, self._limiter.retry_after(result),
            ).to_tool_result()

        data = await handler(tool_input or {})
        logger.info(
            f"Tool {tool_name} succeeded",
            extra={"user_id": self._user_id, "tool_name": tool_name},
        )
        return {"status": "ok", "data": data}

    async def _get_weather(self, tool_input: dict) -> dict:
        location = tool_input.get("location")
        validators.required(location, "location")
        validators.string(location, "location", min_length=1, max_length=100)
        units = tool_input.get("units", "metric")
        validators.one_of(units, "units", ("metric", "imperial"))
        return await self._data.get_weather(location.strip(), units)

    async def _get_motorsport_standings(self, tool_input: dict) -> dict:
        kind = tool_input.get("kind", "drivers")
        validators.one_of(kind, "kind", STANDINGS_KINDS)
        season = str(tool_input.get("season", "current"))
        if season != "current" and not (season.isdigit() and len(season) == 4):
            raise ValidationError(
                "season must be a four-digit year or 'current'",
                {"field": "season", "received": season},
            )
        return await self._data.get_motorsport_standings(kind, season)

    async def _get_stock_quote(self, tool_input: dict) -> dict:
        symbol = tool_input.get("symbol")
        validators.required(symbol, "symbol")
        validators.string(symbol, "symbol", min_length=1, max_length=10)
        return await self._data.get_stock_quote(symbol.strip().upper())
