"""Chat Stream Route — POST /api/chat, model reply streamed as plain text.

Invariants:
    - Only POST is accepted; the pipeline answers every other method with 405
    - Runs behind chat_limiter (60/min per address) and requires a session
    - message is 1..4000 characters; chatId, when given, must be a UUID owned by the caller
    - The user message is stored before the model is called
    - Errors before the first chunk become a normal error envelope; later errors
      are reported inline in the text stream
    - The assistant reply is stored only when the stream completes; a client
      disconnect cancels the model call and stores nothing

Design Decisions:
    - First chunk is awaited inside the handler ("priming") so upstream failures
      still go through the error responder with a proper status
    - Reply persisted through db_manager.session(): the request-scoped session is
      not guaranteed to outlive the handler once streaming starts
    - Client factories are module-level functions so tests can swap them
"""

import logging
import uuid
from functools import lru_cache

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from chatdesk.api.handler import HandlerContext, api_handler
from chatdesk.config import get_settings
from chatdesk.core import validators
from chatdesk.infrastructure.anthropic_client import AnthropicChatClient
from chatdesk.infrastructure.data_apis import DataApiClient
from chatdesk.infrastructure.database import get_db_manager
from chatdesk.infrastructure.observability import request_id_var
from chatdesk.services import chat_store
from chatdesk.services.chat_runner import ChatRunner
from chatdesk.services.limiters import chat_limiter
from chatdesk.services.tool_dispatch import ToolDispatch

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["chat"])

MESSAGE_MAX_LENGTH = 4000
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@lru_cache
def get_chat_client() -> AnthropicChatClient:
    settings = get_settings()
    return AnthropicChatClient(
        settings.anthropic_api_key, settings.anthropic_timeout_seconds,
    )


def get_data_client() -> DataApiClient:
    return DataApiClient.from_settings(get_settings())


async def chat(request: Request, ctx: HandlerContext):
    """Send a message and stream the assistant's reply."""
    settings = get_settings()
    body = await validators.read_json_body(request)
    message = body.get("message")
    validators.required(message, "message")
    validators.string(message, "message", min_length=1, max_length=MESSAGE_MAX_LENGTH)

    chat_id = body.get("chatId")
    if chat_id is not None:
        validators.uuid(chat_id, "chatId")
        conversation = await chat_store.get_owned_chat(
            ctx.db, ctx.user.id, uuid.UUID(chat_id),
        )
    else:
        conversation = await chat_store.create_chat(
            ctx.db, ctx.user.id, chat_store.title_from_message(message),
        )

    history = await chat_store.list_messages(
        ctx.db, conversation.id, limit=settings.chat_history_limit,
    )
    await chat_store.add_message(ctx.db, conversation, "user", message)

    runner = ChatRunner(
        get_chat_client(),
        ToolDispatch(get_data_client(), ctx.user.id),
        model=settings.chat_model,
        max_tokens=settings.chat_max_tokens,
        max_tool_rounds=settings.chat_max_tool_rounds,
    )
    chunks = runner.run(history, message)
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = None

    logger.info(
        "Chat stream started",
        extra={"chat_id": str(conversation.id), "user_id": str(ctx.user.id)},
    )
    return StreamingResponse(
        _stream_body(first, chunks, runner, conversation.id, ctx.user.id, ctx.request_id),
        media_type="text/plain; charset=utf-8",
        headers={"X-Chat-Id": str(conversation.id)},
    )


async def _stream_body(first, chunks, runner, chat_id, user_id, request_id):
    # The body runs after the pipeline reset its request id
    token = request_id_var.set(request_id)
    try:
        completed = False
        try:
            if first is not None:
                yield first
                async for chunk in chunks:
                    yield chunk
            completed = True
        finally:
            await chunks.aclose()
        if completed:
            await _save_reply(runner, chat_id, user_id)
    finally:
        request_id_var.reset(token)


async def _save_reply(runner: ChatRunner, chat_id, user_id) -> None:
    """Persist the assistant message. Never crashes the finished stream."""
    try:
        async with get_db_manager().session() as db:
            conversation = await chat_store.get_owned_chat(db, user_id, chat_id)
            await chat_store.add_message(
                db, conversation, "assistant", runner.reply_text,
                runner.tool_results or None,
            )
    except Exception as e:
        logger.error(
            f"Failed to save assistant reply: {e}",
            extra={"chat_id": str(chat_id)}, exc_info=True,
        )


router.add_api_route(
    "/chat",
    api_handler(
        chat, require_auth=True, allowed_methods={"POST"}, rate_limiter=chat_limiter,
    ),
    methods=ALL_METHODS,
)
