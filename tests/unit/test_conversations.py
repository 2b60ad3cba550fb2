"""Tests for conversations, message ordering, read marks and unread counts."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from campusnet.db.models import Conversation, ConversationParticipant, Notification
from campusnet.errors import Forbidden, NotFound, UsageError
from campusnet.feed.changes import commit
from campusnet.messaging.service import (
    IMAGE_PREVIEW,
    create_group_conversation,
    delete_message,
    edit_message,
    get_or_create_conversation,
    get_unread_count,
    list_conversations,
    list_messages,
    mark_as_read,
    send_message,
    set_muted,
)


class TestGetOrCreate:
    @pytest.mark.asyncio
    async def test_both_directions_converge(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")

        first = await get_or_create_conversation(db, ana.id, ben.id)
        second = await get_or_create_conversation(db, ben.id, ana.id)
        await db.commit()

        assert first.id == second.id
        total = await db.execute(select(func.count()).select_from(Conversation))
        assert total.scalar_one() == 1
        members = await db.execute(
            select(ConversationParticipant.user_id).where(ConversationParticipant.conversation_id == first.id)
        )
        assert sorted(members.scalars().all()) == sorted([ana.id, ben.id])

    @pytest.mark.asyncio
    async def test_self_conversation_rejected(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        with pytest.raises(UsageError):
            await get_or_create_conversation(db, ana.id, ana.id)

    @pytest.mark.asyncio
    async def test_unknown_peer(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        with pytest.raises(NotFound):
            await get_or_create_conversation(db, ana.id, 777)

    @pytest.mark.asyncio
    async def test_group(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        cai = await make_profile("cai")

        group = await create_group_conversation(db, ana.id, [ben.id, cai.id, ben.id], "study group")
        assert group.is_group_chat
        assert group.pair_low is None

        with pytest.raises(UsageError):
            await create_group_conversation(db, ana.id, [ana.id])


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_hi_scenario(self, db, redis, make_profile) -> None:
        """A sends "hi": B sees one unread, a preview, a notification; marking read clears it."""
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await commit(db, redis)

        message = await send_message(db, conversation.id, ana.id, "hi")
        await commit(db, redis)

        assert await get_unread_count(db, ben.id) == 1
        assert await get_unread_count(db, ana.id) == 0
        summaries = await list_conversations(db, ben.id)
        assert summaries[0].conversation.last_message_preview == "hi"
        assert summaries[0].unread_count == 1
        note = await db.execute(select(Notification).where(Notification.receiver_id == ben.id))
        assert note.scalar_one().type == "message"
        assert f"feed:messages:conversation_id:{conversation.id}" in redis.channels_published()
        assert f"feed:notifications:receiver_id:{ben.id}" in redis.channels_published()

        mark = await mark_as_read(db, conversation.id, ben.id)
        assert mark.marked == 1
        assert await get_unread_count(db, ben.id) == 0
        messages = await list_messages(db, conversation.id, ben.id)
        assert [m.id for m in messages] == [message.id]
        assert messages[0].is_read

    @pytest.mark.asyncio
    async def test_order_and_timestamps(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)

        sent = []
        for i in range(5):
            sender = ana if i % 2 == 0 else ben
            sent.append(await send_message(db, conversation.id, sender.id, f"m{i}"))

        listed = await list_messages(db, conversation.id, ana.id)
        assert [m.content for m in listed] == ["m0", "m1", "m2", "m3", "m4"]
        stamps = [m.created_at for m in listed]
        assert stamps == sorted(stamps)

        page = await list_messages(db, conversation.id, ana.id, limit=2, before_id=sent[3].id)
        assert [m.content for m in page] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_client_token_is_idempotent(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)

        first = await send_message(db, conversation.id, ana.id, "once", client_token="tok-00000001")
        again = await send_message(db, conversation.id, ana.id, "once", client_token="tok-00000001")

        assert first.id == again.id
        assert len(await list_messages(db, conversation.id, ana.id)) == 1

    @pytest.mark.asyncio
    async def test_validation_and_membership(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        eve = await make_profile("eve")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)

        with pytest.raises(UsageError):
            await send_message(db, conversation.id, ana.id, "   ")
        with pytest.raises(Forbidden):
            await send_message(db, conversation.id, eve.id, "let me in")
        with pytest.raises(NotFound):
            await send_message(db, 9999, ana.id, "hello?")
        with pytest.raises(Forbidden):
            await list_messages(db, conversation.id, eve.id)

    @pytest.mark.asyncio
    async def test_image_preview(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)

        await send_message(db, conversation.id, ana.id, "", image_url="http://cdn/x.png")
        assert conversation.last_message_preview == IMAGE_PREVIEW

    @pytest.mark.asyncio
    async def test_muted_participant_not_notified(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await set_muted(db, conversation.id, ben.id, True)

        await send_message(db, conversation.id, ana.id, "psst")

        notes = await db.execute(select(func.count()).select_from(Notification))
        assert notes.scalar_one() == 0
        # Still unread though
        assert await get_unread_count(db, ben.id) == 1


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_as_read_is_idempotent(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await send_message(db, conversation.id, ana.id, "one")
        await send_message(db, conversation.id, ana.id, "two")

        first = await mark_as_read(db, conversation.id, ben.id)
        second = await mark_as_read(db, conversation.id, ben.id)

        assert first.marked == 2
        assert second.marked == 0
        assert second.last_read_at == first.last_read_at

    @pytest.mark.asyncio
    async def test_own_messages_never_unread(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        await send_message(db, conversation.id, ana.id, "mine")

        assert await get_unread_count(db, ana.id, conversation.id) == 0
        mark = await mark_as_read(db, conversation.id, ana.id)
        assert mark.marked == 0

    @pytest.mark.asyncio
    async def test_last_read_at_moves_forward(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)

        await send_message(db, conversation.id, ana.id, "first")
        earlier = (await mark_as_read(db, conversation.id, ben.id)).last_read_at
        await send_message(db, conversation.id, ana.id, "second")
        later = (await mark_as_read(db, conversation.id, ben.id)).last_read_at

        assert earlier is not None and later is not None
        assert later >= earlier

    @pytest.mark.asyncio
    async def test_unread_total_is_sum_of_conversations(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        cai = await make_profile("cai")
        with_ben = await get_or_create_conversation(db, ana.id, ben.id)
        with_cai = await get_or_create_conversation(db, ana.id, cai.id)

        await send_message(db, with_ben.id, ben.id, "1")
        await send_message(db, with_ben.id, ben.id, "2")
        await send_message(db, with_cai.id, cai.id, "3")

        summaries = await list_conversations(db, ana.id)
        assert sum(s.unread_count for s in summaries) == await get_unread_count(db, ana.id) == 3
        # Most recently active first
        assert summaries[0].conversation.id == with_cai.id


class TestEditDelete:
    @pytest.mark.asyncio
    async def test_soft_delete(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        keep = await send_message(db, conversation.id, ana.id, "keep")
        drop = await send_message(db, conversation.id, ana.id, "drop")

        with pytest.raises(Forbidden):
            await delete_message(db, drop.id, ben.id)
        await delete_message(db, drop.id, ana.id)

        assert [m.id for m in await list_messages(db, conversation.id, ben.id)] == [keep.id]
        assert await get_unread_count(db, ben.id) == 1
        with pytest.raises(NotFound):
            await delete_message(db, drop.id, ana.id)

    @pytest.mark.asyncio
    async def test_edit(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        conversation = await get_or_create_conversation(db, ana.id, ben.id)
        message = await send_message(db, conversation.id, ana.id, "helo")

        edited = await edit_message(db, message.id, ana.id, "hello")
        assert edited.content == "hello"
        assert edited.edited_at is not None
        with pytest.raises(Forbidden):
            await edit_message(db, message.id, ben.id, "nope")
