"""Chat Schemas — public shapes of users, chats, and messages.

Invariants:
    - Built from ORM rows (from_attributes); never exposes user_id of other users
    - JSON keys are camelCase (createdAt, toolResults) to match request bodies

Design Decisions:
    - dump() helper centralizes by_alias + mode="json" so UUIDs and datetimes
      serialize the same way on every route
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True, alias_generator=to_camel, populate_by_name=True,
    )

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class UserResponse(_ApiModel):
    id: UUID
    email: str
    name: str | None = None
    image: str | None = None


class ChatResponse(_ApiModel):
    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class MessageResponse(_ApiModel):
    id: UUID
    chat_id: UUID
    role: str
    content: str
    tool_results: list | None = None
    created_at: datetime


class ChatDetailResponse(ChatResponse):
    messages: list[MessageResponse]
