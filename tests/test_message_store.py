"""Tests for MessageStore ordering, deduplication and send."""

import asyncio

import pytest

from jobsync.errors import FetchError, InvalidMessageError, SendError, ValidationError
from jobsync.schemas.message import Message

from fakes import EMPLOYER_ID, WORKER_ID, new_id, ts


def _message(conversation_id, at, sender_id=WORKER_ID, message_id=None, **fields):
    return Message.model_validate(
        dict(
            _id=message_id or new_id(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=fields.pop("content", "hi"),
            created_at=at,
            **fields,
        )
    )


class TestLoad:
    """Fetching a page for the focused conversation."""

    async def test_load_orders_by_created_at_then_id(self, message_store, message_repo):
        cid = new_id()
        message_repo.add(cid, WORKER_ID, "second", ts(2), _id="b")
        message_repo.add(cid, WORKER_ID, "first-a", ts(1), _id="a2")
        message_repo.add(cid, WORKER_ID, "first-b", ts(1), _id="a1")

        messages = await message_store.load(cid)

        assert [m.id for m in messages] == ["a1", "a2", "b"]

    async def test_streamed_insert_survives_page_load(self, message_store, message_repo):
        cid = new_id()
        message_repo.add(cid, WORKER_ID, "old", ts(1))
        gate = message_repo.hold("list_for_conversation")
        loading = asyncio.create_task(message_store.load(cid))
        await asyncio.sleep(0)

        streamed = _message(cid, ts(5))
        message_store.append_from_event(streamed)
        gate.set()
        await loading

        assert [m.content for m in message_store.messages] == ["old", "hi"]

    async def test_stale_page_is_discarded(self, message_store, message_repo):
        first, second = new_id(), new_id()
        message_repo.add(first, WORKER_ID, "from first", ts(1))
        message_repo.add(second, WORKER_ID, "from second", ts(1))
        gate = message_repo.hold("list_for_conversation")
        slow = asyncio.create_task(message_store.load(first))
        await asyncio.sleep(0)

        fast = asyncio.create_task(message_store.load(second))
        await asyncio.sleep(0)
        gate.set()
        await asyncio.gather(slow, fast)

        assert message_store.conversation_id == second
        assert [m.content for m in message_store.messages] == ["from second"]

    async def test_load_failure_keeps_messages(self, message_store, message_repo):
        cid = new_id()
        message_repo.add(cid, WORKER_ID, "kept", ts(1))
        await message_store.load(cid)
        message_repo.fail_on.add("list_for_conversation")

        with pytest.raises(FetchError):
            await message_store.load(cid)

        assert [m.content for m in message_store.messages] == ["kept"]
        assert message_store.error is not None


class TestStreamMerge:
    """Streamed inserts and updates merge by identity."""

    async def test_duplicate_insert_appends_once(self, message_store):
        cid = new_id()
        await message_store.load(cid)
        message = _message(cid, ts(3))

        assert message_store.append_from_event(message) is True
        assert message_store.append_from_event(message) is False
        assert len(message_store.messages) == 1

    async def test_out_of_order_arrival_is_sorted(self, message_store):
        cid = new_id()
        await message_store.load(cid)
        message_store.append_from_event(_message(cid, ts(5), content="late"))
        message_store.append_from_event(_message(cid, ts(2), content="early"))

        assert [m.content for m in message_store.messages] == ["early", "late"]

    async def test_other_conversation_is_ignored(self, message_store):
        await message_store.load(new_id())

        assert message_store.append_from_event(_message(new_id(), ts(1))) is False
        assert message_store.messages == []

    async def test_update_replaces_in_place(self, message_store):
        cid = new_id()
        await message_store.load(cid)
        message = _message(cid, ts(1))
        message_store.append_from_event(message)

        message_store.apply_update_from_event(message.model_copy(update={"read": True}))

        assert message_store.messages[0].read is True
        assert len(message_store.messages) == 1

    async def test_mark_read_locally_skips_own(self, message_store):
        cid = new_id()
        await message_store.load(cid)
        message_store.append_from_event(_message(cid, ts(1)))
        message_store.append_from_event(_message(cid, ts(2), sender_id=EMPLOYER_ID))

        assert message_store.mark_read_locally(cid, EMPLOYER_ID) == 1
        assert [m.read for m in message_store.messages] == [True, False]


class TestSend:
    """Send writes the message, then the conversation summary."""

    async def test_send_appends_once_with_echo(self, message_store, conversation_repo):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID, unread_count=2)
        await message_store.load(convo["_id"])

        message, conversation = await message_store.send(convo["_id"], "  Hello  ")
        message_store.append_from_event(message)

        assert [m.content for m in message_store.messages] == ["Hello"]
        assert message.recipient_id == WORKER_ID
        assert conversation.last_message == "Hello"
        assert conversation.last_message_sender_id == EMPLOYER_ID
        assert conversation.updated_at == message.created_at

    async def test_preview_is_truncated(self, message_store, conversation_repo):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID)

        _, conversation = await message_store.send(convo["_id"], "x" * 50)

        assert conversation.last_message == "x" * 20

    @pytest.mark.parametrize("body", ["", "   ", None])
    async def test_empty_body_rejected_before_io(self, message_store, message_repo, conversation_repo, body):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID)

        with pytest.raises(InvalidMessageError):
            await message_store.send(convo["_id"], body)

        assert message_repo.calls == []
        assert message_store.error == "Message content cannot be empty"

    async def test_missing_conversation_rejected(self, message_store, message_repo):
        with pytest.raises(ValidationError):
            await message_store.send(None, "hello")
        assert message_repo.calls == []

    async def test_write_failure_leaves_no_local_message(self, message_store, message_repo, conversation_repo):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID)
        await message_store.load(convo["_id"])
        message_repo.fail_on.add("save_message")

        with pytest.raises(SendError) as excinfo:
            await message_store.send(convo["_id"], "hello")

        assert excinfo.value.message_id is None
        assert message_store.messages == []

    async def test_summary_failure_reports_orphan(self, message_store, message_repo, conversation_repo):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID)
        await message_store.load(convo["_id"])
        conversation_repo.fail_on.add("update_on_new_message")

        with pytest.raises(SendError) as excinfo:
            await message_store.send(convo["_id"], "hello")

        assert excinfo.value.message_id in message_repo.docs
        assert [m.id for m in message_store.messages] == [excinfo.value.message_id]

    async def test_success_clears_error(self, message_store, conversation_repo):
        convo = conversation_repo.add(EMPLOYER_ID, WORKER_ID)
        with pytest.raises(InvalidMessageError):
            await message_store.send(convo["_id"], "")

        await message_store.send(convo["_id"], "ok")

        assert message_store.error is None
