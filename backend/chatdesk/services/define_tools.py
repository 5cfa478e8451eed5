"""Define Data Tools — Anthropic tool schemas for the three data APIs.

Invariants:
    - Tool names match the keys in ToolDispatch._handlers exactly
    - Every input_schema marks the minimum the handler needs as required

Design Decisions:
    - Descriptions tell the model when to call the tool and when not to;
      general knowledge questions should not burn the per-user tool budget
"""

WEATHER_TOOL = {
    "name": "get_weather",
    "description": (
        "Get the current weather for a city. Use this whenever the user asks "
        "about present conditions, temperature, or whether to expect rain. "
        "Do not use it for forecasts or historical climate questions."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "location": {
                "type": "string",
                "description": "City name, optionally with country code, e.g. 'Lisbon,PT'",
            },
            "units": {
                "type": "string",
                "enum": ["metric", "imperial"],
                "description": "Unit system for temperature and wind speed",
            },
        },
        "required": ["location"],
    },
}

MOTORSPORT_TOOL = {
    "name": "get_motorsport_standings",
    "description": (
        "Get Formula 1 championship standings (drivers or constructors) for "
        "the current or a past season. Returns the top 10 with points and wins."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "kind": {
                "type": "string",
                "enum": ["drivers", "constructors"],
                "description": "Which championship table to fetch",
            },
            "season": {
                "type": "string",
                "description": "Four-digit year, or 'current'",
            },
        },
        "required": [],
    },
}

STOCK_QUOTE_TOOL = {
    "name": "get_stock_quote",
    "description": (
        "Get the latest quote for a stock ticker: price, daily change, and "
        "volume. Use the exchange ticker symbol, e.g. 'AAPL' or 'MSFT'."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "symbol": {
                "type": "string",
                "description": "Ticker symbol, 1-10 characters",
            },
        },
        "required": ["symbol"],
    },
}

DATA_TOOLS = [WEATHER_TOOL, MOTORSPORT_TOOL, STOCK_QUOTE_TOOL]
