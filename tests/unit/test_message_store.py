"""Unit tests for conversation and message persistence."""

import pytest

from ragchat.services.message_store import OwnershipError


class TestMessageStore:
    """Tests for MessageStore class."""

    @pytest.mark.asyncio
    async def test_save_and_list_messages(self, message_store):
        await message_store.save_message("alice", {
            "messageId": "m1",
            "conversationId": "c1",
            "sender": "User",
            "text": "reset password",
            "isCreatedByUser": True,
        })

        messages = await message_store.get_messages("alice", "c1")

        assert len(messages) == 1
        assert messages[0]["messageId"] == "m1"
        assert messages[0]["isCreatedByUser"] is True
        assert messages[0]["content"] == []
        assert messages[0]["files"] == []

    @pytest.mark.asyncio
    async def test_save_is_upsert(self, message_store):
        """Saving the same messageId updates the stored row."""
        record = {"messageId": "m1", "conversationId": "c1", "text": "partial", "unfinished": True}
        await message_store.save_message("alice", record)
        await message_store.save_message("alice", {**record, "text": "complete", "unfinished": False})

        messages = await message_store.get_messages("alice", "c1")

        assert len(messages) == 1
        assert messages[0]["text"] == "complete"
        assert messages[0]["unfinished"] is False

    @pytest.mark.asyncio
    async def test_non_list_content_not_stored(self, message_store):
        stored = await message_store.save_message("alice", {
            "messageId": "m1",
            "conversationId": "c1",
            "text": "x",
            "content": "a string",
            "files": [{"file_id": "f1"}],
        })

        assert stored["content"] == []
        assert stored["files"] == [{"file_id": "f1"}]

    @pytest.mark.asyncio
    async def test_missing_message_id(self, message_store):
        with pytest.raises(ValueError):
            await message_store.save_message("alice", {"text": "no id"})

    @pytest.mark.asyncio
    async def test_messages_scoped_to_user(self, message_store):
        await message_store.save_message("alice", {"messageId": "m1", "conversationId": "c1", "text": "x"})

        assert await message_store.get_messages("bob", "c1") == []

    @pytest.mark.asyncio
    async def test_save_convo_defaults_title(self, message_store):
        convo = await message_store.save_convo("alice", {"conversationId": "c1", "endpoint": "openai"})

        assert convo["title"] == "New Chat"
        assert convo["endpoint"] == "openai"

    @pytest.mark.asyncio
    async def test_save_convo_keeps_title(self, message_store):
        """A later save without a title keeps the existing one."""
        await message_store.save_convo("alice", {"conversationId": "c1", "title": "Password help"})
        convo = await message_store.save_convo("alice", {"conversationId": "c1", "model": "gpt-test"})

        assert convo["title"] == "Password help"
        assert convo["model"] == "gpt-test"

    @pytest.mark.asyncio
    async def test_get_convo_ownership(self, message_store):
        await message_store.save_convo("alice", {"conversationId": "c1"})

        assert (await message_store.get_convo("alice", "c1"))["conversationId"] == "c1"
        assert await message_store.get_convo("bob", "c1") is None
        assert await message_store.get_convo("alice", "missing") is None

    @pytest.mark.asyncio
    async def test_save_convo_requires_id(self, message_store):
        with pytest.raises(ValueError):
            await message_store.save_convo("alice", {"title": "No id"})

    @pytest.mark.asyncio
    async def test_other_users_message_not_overwritten(self, message_store):
        """A save reusing another user's messageId is rejected."""
        await message_store.save_message("alice", {
            "messageId": "alice-msg",
            "conversationId": "alice-convo",
            "text": "mine",
        })

        with pytest.raises(OwnershipError):
            await message_store.save_message("bob", {
                "messageId": "alice-msg",
                "conversationId": "bob-convo",
                "text": "hijacked",
            })

        messages = await message_store.get_messages("alice", "alice-convo")
        assert [m["text"] for m in messages] == ["mine"]
        assert await message_store.get_messages("bob", "bob-convo") == []

    @pytest.mark.asyncio
    async def test_other_users_conversation_not_overwritten(self, message_store):
        await message_store.save_convo("alice", {"conversationId": "c1", "title": "Password help"})

        with pytest.raises(OwnershipError):
            await message_store.save_convo("bob", {"conversationId": "c1", "title": "Mine now"})

        assert (await message_store.get_convo("alice", "c1"))["title"] == "Password help"
