from __future__ import annotations

from pathlib import Path

import pytest

from multimodal_chat.errors import PersistenceError
from multimodal_chat.repository import ChatRepository


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def repository(tmp_path: Path):
    repo = ChatRepository(tmp_path / "chat.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_messages_are_appended_in_order(repository: ChatRepository) -> None:
    user = await repository.create_user("Tester")
    conversation = await repository.create_conversation(user["id"], title="Sales")

    first = await repository.add_message(
        {
            "conversation_id": conversation["id"],
            "user_id": user["id"],
            "role": "user",
            "content": "What sold best?",
            "tabular_ref": "region,total\nnorth,10",
            "tabular_file_name": "sales.csv",
            "ignored": "field",
        }
    )
    await repository.add_message(
        {"conversation_id": conversation["id"], "role": "assistant", "content": "North."}
    )

    stored = await repository.get_messages(conversation["id"])

    assert [m["content"] for m in stored] == ["What sold best?", "North."]
    assert stored[0]["id"] == first["id"]
    assert stored[0]["tabular_file_name"] == "sales.csv"
    assert stored[1]["user_id"] is None
    assert "ignored" not in stored[0]


@pytest.mark.anyio
async def test_add_message_requires_conversation_and_role(repository: ChatRepository) -> None:
    with pytest.raises(PersistenceError, match="conversation_id"):
        await repository.add_message({"role": "user", "content": "orphan"})


@pytest.mark.anyio
async def test_add_message_rejects_unknown_conversation(repository: ChatRepository) -> None:
    with pytest.raises(PersistenceError):
        await repository.add_message(
            {"conversation_id": "missing", "role": "user", "content": "hi"}
        )


@pytest.mark.anyio
async def test_create_user_is_idempotent(repository: ChatRepository) -> None:
    await repository.create_user("Tester", user_id="fixed")
    await repository.create_user("Tester", user_id="fixed")
    conversation = await repository.create_conversation("fixed")

    assert conversation["title"].startswith("Conversation ")
    assert [c["id"] for c in await repository.list_conversations("fixed")] == [
        conversation["id"]
    ]


@pytest.mark.anyio
async def test_list_conversations_newest_first(repository: ChatRepository) -> None:
    user = await repository.create_user("Tester")
    older = await repository.create_conversation(user["id"], title="older")
    newer = await repository.create_conversation(user["id"], title="newer")
    await repository.create_conversation(None, title="someone else")

    listed = await repository.list_conversations(user["id"])

    assert [c["id"] for c in listed] == [newer["id"], older["id"]]


@pytest.mark.anyio
async def test_uninitialized_repository_raises(tmp_path: Path) -> None:
    repo = ChatRepository(tmp_path / "chat.db")

    with pytest.raises(PersistenceError):
        await repo.get_messages("anything")
