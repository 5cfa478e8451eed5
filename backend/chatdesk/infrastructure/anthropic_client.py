"""Anthropic Client — streams model replies and maps SDK failures to AppErrors.

Invariants:
    - Timeouts → TIMEOUT; connection failures and 529 overload → API_UNAVAILABLE;
      every other SDK error → AI_ERROR
    - Errors raised while iterating the stream are mapped too (they propagate
      through the context manager's yield)
    - CancelledError (BaseException) passes through uncaught and the SDK stream
      context exits, closing the upstream HTTP response

Design Decisions:
    - No retry loop: a partially delivered stream cannot be replayed to the client
    - SDK retries disabled (max_retries=0) for the same reason
    - APITimeoutError caught before APIConnectionError (it is a subclass)
"""

import logging
from contextlib import asynccontextmanager

import anthropic
from anthropic import (
    APIError,
    APIConnectionError,
    APIStatusError,
    RateLimitError,
    APITimeoutError,
)

from chatdesk.core.errors import AIError, ApiUnavailableError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

_SERVICE = "AI service"

# OverloadedError (HTTP 529) is not re-exported by every SDK release;
# detect it by status code on APIStatusError.
_OVERLOADED_STATUS = 529


def _is_overloaded(e: APIError) -> bool:
    return isinstance(e, APIStatusError) and e.status_code == _OVERLOADED_STATUS


class AnthropicChatClient:
    """Wraps AsyncAnthropic streaming with error mapping."""

    def __init__(self, api_key: str, timeout_seconds: int = 120):
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )

    @asynccontextmanager
    async def stream_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        tools: list,
        messages: list,
    ):
        """Open a streaming Messages call; yields the SDK stream."""
        try:
            async with self.client.messages.stream(
                model=model, max_tokens=max_tokens,
                system=system, tools=tools, messages=messages,
            ) as stream:
                yield stream
        except APITimeoutError as e:
            raise UpstreamTimeoutError(_SERVICE) from e
        except APIConnectionError as e:
            logger.error(f"Anthropic connection error: {e}")
            raise ApiUnavailableError(_SERVICE) from e
        except RateLimitError as e:
            raise AIError(
                "AI service rate limit reached, please retry shortly",
                {"reason": "rate_limit", "retry_after": _retry_after(e)},
            ) from e
        except APIError as e:
            if _is_overloaded(e):
                raise ApiUnavailableError(
                    _SERVICE, "AI service is overloaded, please retry shortly",
                ) from e
            logger.error(f"Anthropic API error: {e}")
            raise AIError("AI service request failed") from e


def _retry_after(error: RateLimitError) -> int | None:
    """Retry-After header in seconds, when the response carries one."""
    response = getattr(error, "response", None)
    if response is None:
        return None
    val = response.headers.get("retry-after")
    if val and val.isdigit():
        return int(val)
    return None
