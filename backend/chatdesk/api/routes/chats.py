"""Chat Routes — CRUD over the caller's chats and their messages.

Invariants:
    - Every endpoint requires an authenticated session (require_auth=True)
    - Every endpoint runs behind api_limiter (100/min per address)
    - A chat id that is malformed → 400; absent or owned by someone else → 404
    - Messages are append-only; DELETE removes a chat together with its messages

Design Decisions:
    - Handlers take (request, ctx) and are wrapped by api_handler at registration,
      so method/limit/auth stages stay out of the handler bodies
    - Bodies parsed with read_json_body + validators: same codes as all other input
"""

import uuid

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatdesk.api.handler import HandlerContext, api_handler
from chatdesk.core import validators
from chatdesk.core.errors import ErrorCode, ValidationError
from chatdesk.models.message import MESSAGE_ROLES
from chatdesk.schemas.chat import ChatDetailResponse, ChatResponse, MessageResponse
from chatdesk.services import chat_store
from chatdesk.services.limiters import api_limiter

router = APIRouter(prefix="/api", tags=["chats"])

TITLE_MAX_LENGTH = 100
MESSAGE_CONTENT_MAX_LENGTH = 100_000


def _chat_id(ctx: HandlerContext) -> uuid.UUID:
    raw = ctx.params.get("chat_id")
    validators.uuid(raw, "chatId")
    return uuid.UUID(raw)


def _title(value) -> str:
    validators.required(value, "title")
    validators.string(value, "title", min_length=1, max_length=TITLE_MAX_LENGTH)
    title = validators.sanitize_string(value, TITLE_MAX_LENGTH)
    # "<>" or whitespace-only titles sanitize to nothing
    validators.string(title, "title", min_length=1)
    return title


async def list_chats(request: Request, ctx: HandlerContext):
    """Caller's chats, most recently updated first."""
    page, limit, offset = validators.parse_pagination(request.query_params)
    chats, total = await chat_store.list_chats(ctx.db, ctx.user.id, limit, offset)
    return JSONResponse({
        "chats": [ChatResponse.model_validate(c).dump() for c in chats],
        "pagination": validators.pagination_meta(page, limit, total),
    })


async def create_chat(request: Request, ctx: HandlerContext):
    body = await validators.read_json_body(request)
    chat = await chat_store.create_chat(ctx.db, ctx.user.id, _title(body.get("title")))
    return JSONResponse(ChatResponse.model_validate(chat).dump())


async def get_chat(request: Request, ctx: HandlerContext):
    chat = await chat_store.get_owned_chat(ctx.db, ctx.user.id, _chat_id(ctx))
    messages = await chat_store.list_messages(ctx.db, chat.id)
    detail = ChatDetailResponse(
        id=chat.id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )
    return JSONResponse(detail.dump())


async def update_chat(request: Request, ctx: HandlerContext):
    chat = await chat_store.get_owned_chat(ctx.db, ctx.user.id, _chat_id(ctx))
    body = await validators.read_json_body(request)
    if "title" in body:
        chat = await chat_store.rename_chat(ctx.db, chat, _title(body["title"]))
    return JSONResponse(ChatResponse.model_validate(chat).dump())


async def delete_chat(request: Request, ctx: HandlerContext):
    chat = await chat_store.get_owned_chat(ctx.db, ctx.user.id, _chat_id(ctx))
    await chat_store.delete_chat(ctx.db, chat)
    return JSONResponse({"success": True, "id": str(chat.id)})


async def add_message(request: Request, ctx: HandlerContext):
    chat = await chat_store.get_owned_chat(ctx.db, ctx.user.id, _chat_id(ctx))
    body = await validators.read_json_body(request)

    role = body.get("role")
    validators.required(role, "role")
    validators.one_of(role, "role", MESSAGE_ROLES)
    content = body.get("content")
    validators.required(content, "content")
    validators.string(content, "content", min_length=1, max_length=MESSAGE_CONTENT_MAX_LENGTH)
    tool_results = body.get("toolResults")
    if tool_results is not None and not isinstance(tool_results, list):
        raise ValidationError(
            "toolResults must be a list",
            {"field": "toolResults", "type": "array",
             "received": type(tool_results).__name__},
            code=ErrorCode.INVALID_INPUT,
        )

    message = await chat_store.add_message(ctx.db, chat, role, content, tool_results)
    return JSONResponse(MessageResponse.model_validate(message).dump())


router.add_api_route(
    "/chats",
    api_handler(list_chats, require_auth=True, rate_limiter=api_limiter),
    methods=["GET"],
)
router.add_api_route(
    "/chats",
    api_handler(create_chat, require_auth=True, rate_limiter=api_limiter),
    methods=["POST"],
)
router.add_api_route(
    "/chats/{chat_id}",
    api_handler(get_chat, require_auth=True, rate_limiter=api_limiter),
    methods=["GET"],
)
router.add_api_route(
    "/chats/{chat_id}",
    api_handler(update_chat, require_auth=True, rate_limiter=api_limiter),
    methods=["PATCH"],
)
router.add_api_route(
    "/chats/{chat_id}",
    api_handler(delete_chat, require_auth=True, rate_limiter=api_limiter),
    methods=["DELETE"],
)
router.add_api_route(
    "/chats/{chat_id}/messages",
    api_handler(add_message, require_auth=True, rate_limiter=api_limiter),
    methods=["POST"],
)
