"""Chat Runner — streams one model reply, running data tools between rounds.

Invariants:
    - run() yields plain text chunks in arrival order
    - At most max_tool_rounds tool rounds per turn; then the turn ends with a notice
    - Tool errors never crash the loop: they become tool_result blocks
    - An AppError before the first chunk propagates (caller can still send an
      error envelope); after the first chunk it is logged and reported inline
    - reply_text and tool_results describe exactly what was streamed

Design Decisions:
    - Anthropic streaming API for real-time text delivery
    - get_final_message() for tool_use blocks (avoids manual block reconstruction)
    - CancelledError passes through: the stream context closes the upstream call
"""

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator

from chatdesk.core.errors import AppError
from chatdesk.services.define_tools import DATA_TOOLS
from chatdesk.services.system_prompt import build_system_prompt
from chatdesk.services.tool_dispatch import ToolDispatch

logger = logging.getLogger(__name__)

TOOL_LIMIT_NOTICE = "\n\n[Stopped: too many tool calls in one reply.]"


# -- Stream helpers ------------------------------------------------------------

def text_from_event(event: Any) -> str | None:
    """Text carried by a content_block_delta/text_delta event, else None."""
    if getattr(event, "type", None) != "content_block_delta":
        return None
    delta = event.delta
    if getattr(delta, "type", None) == "text_delta" and delta.text:
        return delta.text
    return None


def has_tool_use(response: Any) -> bool:
    return any(
        getattr(b, "type", None) == "tool_use"
        for b in response.content
    )


def serialize_content(response: Any) -> list[dict]:
    return [b.model_dump(exclude_none=True) for b in response.content]


def history_to_messages(history: list) -> list[dict]:
    """Stored messages → Anthropic message list (starts with a user turn)."""
    messages = [
        {"role": m.role, "content": m.content}
        for m in history if m.content
    ]
    while messages and messages[0]["role"] != "user":
        messages.pop(0)
    return messages


# -- Runner --------------------------------------------------------------------

class ChatRunner:
    """One user turn: model stream + tool loop."""

    def __init__(
        self, client, dispatch: ToolDispatch, *,
        model: str, max_tokens: int = 4096, max_tool_rounds: int = 5,
    ):
        self.client = client
        self.dispatch = dispatch
        self.model = model
        self.max_tokens = max_tokens
        self.max_tool_rounds = max_tool_rounds
        self.tool_results: list[dict] = []
        self._chunks: list[str] = []

    @property
    def reply_text(self) -> str:
        return "".join(self._chunks)

    async def run(self, history: list, user_message: str) -> AsyncIterator[str]:
        messages = history_to_messages(history)
        messages.append({"role": "user", "content": user_message})
        system = build_system_prompt()

        try:
            async with aclosing(self._tool_loop(system, messages)) as chunks:
                async for chunk in chunks:
                    self._chunks.append(chunk)
                    yield chunk
        except asyncio.CancelledError:
            logger.info("Chat stream cancelled (client disconnect)")
            raise
        except AppError as e:
            if not self._chunks:
                raise
            logger.error(
                f"Model stream failed mid-reply: {e.message}",
                extra={"error_code": e.code.value},
            )
            notice = f"\n\n[Error: {e.message}]"
            self._chunks.append(notice)
            yield notice

    async def _tool_loop(self, system: str, messages: list) -> AsyncIterator[str]:
        for _ in range(self.max_tool_rounds + 1):
            async with self.client.stream_message(
                model=self.model, max_tokens=self.max_tokens,
                system=system, tools=DATA_TOOLS, messages=messages,
            ) as stream:
                async for event in stream:
                    text = text_from_event(event)
                    if text:
                        yield text
                response = await stream.get_final_message()

            if not has_tool_use(response):
                return
            messages.append({"role": "assistant", "content": serialize_content(response)})
            messages.append({
                "role": "user",
                "content": await self._execute_tool_blocks(response.content),
            })

        logger.warning(f"Tool round limit ({self.max_tool_rounds}) reached")
        yield TOOL_LIMIT_NOTICE

    async def _execute_tool_blocks(self, content_blocks) -> list[dict]:
        blocks = []
        for block in content_blocks:
            if getattr(block, "type", None) != "tool_use":
                continue
            result = await self._execute_tool_safe(block.name, block.input)
            self.tool_results.append({
                "tool": block.name, "input": block.input, "result": result,
            })
            blocks.append({
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": json.dumps(result, ensure_ascii=False),
                "is_error": result.get("status") == "error",
            })
        return blocks

    async def _execute_tool_safe(self, tool_name: str, tool_input: dict) -> dict:
        """Execute tool with error boundary — never raises."""
        try:
            return await self.dispatch.execute(tool_name, tool_input)
        except AppError as e:
            logger.warning(
                f"Tool error: {e.message}",
                extra={"tool_name": tool_name, "error_code": e.code.value},
            )
            return e.to_tool_result()
        except Exception as e:
            logger.error(
                f"Unexpected error in tool '{tool_name}': {e}", exc_info=True,
            )
            return {
                "status": "error", "error_code": "TOOL_EXECUTION_ERROR",
                "message": f"Internal error executing {tool_name}",
            }
