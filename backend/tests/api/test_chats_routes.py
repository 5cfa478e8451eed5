"""Chat routes — CRUD, ownership scoping, and validation codes.

Invariants:
    - Anonymous callers get 401 UNAUTHORIZED on every chat route
    - Another user's chat answers exactly like a missing one (404)
    - Malformed ids are 400 before any lookup
"""

import uuid

import pytest
from sqlalchemy import func, select

from chatdesk.models import Chat, Message

from tests.factories import create_chat, create_user


async def test_list_requires_session(client):
    res = await client.get("/api/chats")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "UNAUTHORIZED"


async def test_create_chat_returns_chat(signed_in_client):
    res = await signed_in_client.post("/api/chats", json={"title": "Trip"})
    assert res.status_code == 200
    body = res.json()
    assert body["title"] == "Trip"
    uuid.UUID(body["id"])
    assert "createdAt" in body and "updatedAt" in body


async def test_create_chat_sanitizes_title(signed_in_client):
    res = await signed_in_client.post("/api/chats", json={"title": "  <Paris>  "})
    assert res.json()["title"] == "Paris"


@pytest.mark.parametrize("payload,code", [
    ({}, "MISSING_REQUIRED_FIELD"),
    ({"title": ""}, "MISSING_REQUIRED_FIELD"),
    ({"title": 12}, "INVALID_INPUT"),
    ({"title": "<>"}, "VALIDATION_ERROR"),
])
async def test_create_chat_rejects_bad_title(signed_in_client, payload, code):
    res = await signed_in_client.post("/api/chats", json=payload)
    assert res.status_code == 400
    assert res.json()["error"]["code"] == code


async def test_create_chat_rejects_non_json_body(signed_in_client):
    res = await signed_in_client.post(
        "/api/chats", content=b"not json",
        headers={"content-type": "application/json"},
    )
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_INPUT"


async def test_over_long_title_is_rejected(signed_in_client, test_db):
    res = await signed_in_client.post("/api/chats", json={"title": "x" * 150})
    assert res.status_code == 400
    error = res.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"]["max_length"] == 100
    assert await test_db.scalar(select(func.count()).select_from(Chat)) == 0


async def test_title_at_limit_is_kept_whole(signed_in_client):
    res = await signed_in_client.post("/api/chats", json={"title": "x" * 100})
    assert res.status_code == 200
    assert res.json()["title"] == "x" * 100


async def test_list_only_returns_own_chats(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    other, _ = await create_user(test_db, email="grace@example.com")
    await create_chat(test_db, user, "Mine")
    await create_chat(test_db, other, "Theirs")

    res = await signed_in_client.get("/api/chats")
    assert res.status_code == 200
    body = res.json()
    assert [c["title"] for c in body["chats"]] == ["Mine"]
    assert body["pagination"] == {
        "page": 1, "limit": 20, "total": 1, "has_next": False, "has_prev": False,
    }


async def test_list_paginates(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    for i in range(3):
        await create_chat(test_db, user, f"Chat {i}")

    res = await signed_in_client.get("/api/chats", params={"page": 2, "limit": 2})
    body = res.json()
    assert len(body["chats"]) == 1
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["has_prev"] is True
    assert body["pagination"]["has_next"] is False


async def test_list_clamps_out_of_range_paging(signed_in_client):
    res = await signed_in_client.get("/api/chats", params={"limit": 500, "page": 0})
    assert res.status_code == 200
    pagination = res.json()["pagination"]
    assert pagination["page"] == 1
    assert pagination["limit"] == 100


async def test_get_chat_with_messages_in_order(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    chat = await create_chat(
        test_db, user, messages=(("user", "Weather in Oslo?"), ("assistant", "Cold.")),
    )
    res = await signed_in_client.get(f"/api/chats/{chat.id}")
    assert res.status_code == 200
    body = res.json()
    assert body["title"] == "Trip"
    assert [(m["role"], m["content"]) for m in body["messages"]] == [
        ("user", "Weather in Oslo?"), ("assistant", "Cold."),
    ]
    assert body["messages"][0]["chatId"] == str(chat.id)


async def test_other_users_chat_is_not_found(signed_in_client, test_db):
    other, _ = await create_user(test_db, email="grace@example.com")
    chat = await create_chat(test_db, other)
    res = await signed_in_client.get(f"/api/chats/{chat.id}")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "RECORD_NOT_FOUND"


async def test_missing_chat_is_not_found(signed_in_client):
    res = await signed_in_client.get(f"/api/chats/{uuid.uuid4()}")
    assert res.status_code == 404


async def test_chat_id_with_trailing_newline_is_bad_request(signed_in_client):
    res = await signed_in_client.get(f"/api/chats/{uuid.uuid4()}%0A")
    assert res.status_code == 400
    assert res.json()["error"]["details"] == {"field": "chatId", "format": "uuid"}


async def test_malformed_chat_id_is_bad_request(signed_in_client):
    res = await signed_in_client.get("/api/chats/not-a-uuid")
    assert res.status_code == 400
    body = res.json()["error"]
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["field"] == "chatId"


async def test_rename_chat(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    chat = await create_chat(test_db, user)
    res = await signed_in_client.patch(f"/api/chats/{chat.id}", json={"title": "Oslo"})
    assert res.status_code == 200
    assert res.json()["title"] == "Oslo"

    res = await signed_in_client.get(f"/api/chats/{chat.id}")
    assert res.json()["title"] == "Oslo"


async def test_rename_rejects_over_long_title(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    chat = await create_chat(test_db, user)
    res = await signed_in_client.patch(f"/api/chats/{chat.id}", json={"title": "y" * 101})
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    res = await signed_in_client.get(f"/api/chats/{chat.id}")
    assert res.json()["title"] == "Trip"


async def test_delete_chat_removes_messages(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    chat = await create_chat(test_db, user, messages=(("user", "hi"),))
    res = await signed_in_client.delete(f"/api/chats/{chat.id}")
    assert res.status_code == 200
    assert res.json() == {"success": True, "id": str(chat.id)}

    assert await test_db.scalar(
        select(func.count()).select_from(Chat).where(Chat.id == chat.id),
    ) == 0
    assert await test_db.scalar(
        select(func.count()).select_from(Message).where(Message.chat_id == chat.id),
    ) == 0


async def test_delete_other_users_chat_is_not_found(signed_in_client, test_db):
    other, _ = await create_user(test_db, email="grace@example.com")
    chat = await create_chat(test_db, other)
    res = await signed_in_client.delete(f"/api/chats/{chat.id}")
    assert res.status_code == 404


async def test_add_message(signed_in_client, seed_user, test_db):
    user, _ = seed_user
    chat = await create_chat(test_db, user)
    res = await signed_in_client.post(
        f"/api/chats/{chat.id}/messages",
        json={"role": "assistant", "content": "Sunny", "toolResults": [{"tool": "get_weather"}]},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["role"] == "assistant"
    assert body["toolResults"] == [{"tool": "get_weather"}]


@pytest.mark.parametrize("payload,code", [
    ({"content": "hi"}, "MISSING_REQUIRED_FIELD"),
    ({"role": "system", "content": "hi"}, "INVALID_INPUT"),
    ({"role": "user", "content": ""}, "MISSING_REQUIRED_FIELD"),
    ({"role": "user", "content": "hi", "toolResults": "nope"}, "INVALID_INPUT"),
])
async def test_add_message_validation(signed_in_client, seed_user, test_db, payload, code):
    user, _ = seed_user
    chat = await create_chat(test_db, user)
    res = await signed_in_client.post(f"/api/chats/{chat.id}/messages", json=payload)
    assert res.status_code == 400
    assert res.json()["error"]["code"] == code
