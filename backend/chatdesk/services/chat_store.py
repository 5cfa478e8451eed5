"""Chat Store — persistence operations for chats and messages, scoped by owner.

Invariants:
    - Every read and write filters by user_id: another user's chat is
      indistinguishable from a missing one (RECORD_NOT_FOUND)
    - Messages are only inserted, never updated
    - delete_chat removes messages before the chat (no reliance on FK cascade,
      which SQLite leaves off by default)
    - Appending a message bumps the chat's updated_at
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.errors import RecordNotFoundError
from chatdesk.models.chat import Chat
from chatdesk.models.message import Message

TITLE_FROM_MESSAGE_LENGTH = 50


def title_from_message(message: str) -> str:
    """First line of the message, cut to TITLE_FROM_MESSAGE_LENGTH characters."""
    first_line = message.strip().splitlines()[0] if message.strip() else ""
    if len(first_line) <= TITLE_FROM_MESSAGE_LENGTH:
        return first_line or "New chat"
    return first_line[:TITLE_FROM_MESSAGE_LENGTH - 3].rstrip() + "..."


async def list_chats(
    db: AsyncSession, user_id: uuid.UUID, limit: int, offset: int,
) -> tuple[list[Chat], int]:
    total = await db.scalar(
        select(func.count()).select_from(Chat).where(Chat.user_id == user_id),
    )
    result = await db.execute(
        select(Chat)
        .where(Chat.user_id == user_id)
        .order_by(Chat.updated_at.desc())
        .limit(limit)
        .offset(offset),
    )
    return list(result.scalars().all()), total or 0


async def create_chat(db: AsyncSession, user_id: uuid.UUID, title: str) -> Chat:
    chat = Chat(user_id=user_id, title=title)
    db.add(chat)
    await db.commit()
    return chat


async def get_owned_chat(
    db: AsyncSession, user_id: uuid.UUID, chat_id: uuid.UUID,
) -> Chat:
    result = await db.execute(
        select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id),
    )
    chat = result.scalar_one_or_none()
    if chat is None:
        raise RecordNotFoundError("Chat", str(chat_id))
    return chat


async def rename_chat(db: AsyncSession, chat: Chat, title: str) -> Chat:
    chat.title = title
    chat.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return chat


async def delete_chat(db: AsyncSession, chat: Chat) -> None:
    await db.execute(delete(Message).where(Message.chat_id == chat.id))
    await db.execute(delete(Chat).where(Chat.id == chat.id))
    await db.commit()


async def list_messages(
    db: AsyncSession, chat_id: uuid.UUID, limit: int | None = None,
) -> list[Message]:
    """Messages oldest first. With limit, the most recent `limit` of them."""
    if limit is None:
        result = await db.execute(
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc()),
        )
        return list(result.scalars().all())
    result = await db.execute(
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc())
        .limit(limit),
    )
    return list(reversed(result.scalars().all()))


async def add_message(
    db: AsyncSession, chat: Chat, role: str, content: str,
    tool_results: list | None = None,
) -> Message:
    message = Message(
        chat_id=chat.id, role=role, content=content, tool_results=tool_results,
    )
    db.add(message)
    chat.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return message
