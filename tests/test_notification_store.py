"""Tests for NotificationStore and notification routing."""

import asyncio

import pytest

from jobsync.errors import FetchError, WriteError
from jobsync.schemas.actor import ActorRole
from jobsync.schemas.notification import Notification
from jobsync.services.notification_routes import resolve_route

from fakes import EMPLOYER_ID, WORKER_ID, new_id, ts


def _notification(user_id=EMPLOYER_ID, at=ts(1), **fields):
    return Notification.model_validate(dict(_id=fields.pop("_id", new_id()), user_id=user_id, created_at=at, **fields))


class TestFetch:

    async def test_newest_first(self, notification_store, notification_repo):
        old = notification_repo.add(EMPLOYER_ID, ts(1))
        new = notification_repo.add(EMPLOYER_ID, ts(2))
        notification_repo.add(WORKER_ID, ts(3))

        rows = await notification_store.fetch()

        assert [n.id for n in rows] == [new["_id"], old["_id"]]

    async def test_legacy_message_field_maps_to_body(self, notification_store, notification_repo):
        doc = notification_repo.add(EMPLOYER_ID, ts(1), message="You have a new applicant")
        del notification_repo.docs[doc["_id"]]["body"]

        await notification_store.fetch()

        assert notification_store.get(doc["_id"]).body == "You have a new applicant"

    async def test_failure_keeps_cache(self, notification_store, notification_repo):
        notification_repo.add(EMPLOYER_ID, ts(1))
        await notification_store.fetch()
        notification_repo.fail_on.add("list_for_user")

        with pytest.raises(FetchError):
            await notification_store.fetch()

        assert len(notification_store.notifications) == 1
        assert notification_store.error is not None

    async def test_events_during_fetch_survive_the_page(self, notification_store, notification_repo):
        doc = notification_repo.add(EMPLOYER_ID, ts(1))
        await notification_store.fetch()
        gate = notification_repo.hold("list_for_user")
        fetching = asyncio.create_task(notification_store.fetch())
        await asyncio.sleep(0)

        read = notification_store.get(doc["_id"]).model_copy(update={"read": True})
        notification_store.apply_update_event(read)
        arrived = _notification(at=ts(5))
        notification_store.apply_insert_event(arrived)
        gate.set()
        await fetching

        assert notification_store.get(doc["_id"]).read is True
        assert [n.id for n in notification_store.notifications] == [arrived.id, doc["_id"]]
        assert notification_store.unread_count() == 1

    async def test_untouched_rows_follow_the_page(self, notification_store, notification_repo):
        doc = notification_repo.add(EMPLOYER_ID, ts(1))
        await notification_store.fetch()
        notification_repo.docs[doc["_id"]]["read"] = True

        await notification_store.fetch()

        assert notification_store.unread_count() == 0


class TestEvents:

    async def test_insert_is_idempotent(self, notification_store):
        notification = _notification()

        assert notification_store.apply_insert_event(notification) is True
        assert notification_store.apply_insert_event(notification) is False
        assert notification_store.unread_count() == 1

    async def test_update_overwrites(self, notification_store):
        notification = _notification()
        notification_store.apply_insert_event(notification)

        notification_store.apply_update_event(notification.model_copy(update={"read": True}))

        assert notification_store.unread_count() == 0

    async def test_other_users_ignored(self, notification_store):
        assert notification_store.apply_insert_event(_notification(user_id=WORKER_ID)) is False
        assert notification_store.notifications == []


class TestMarkRead:

    async def test_mark_read_flips_one(self, notification_store, notification_repo):
        first = notification_repo.add(EMPLOYER_ID, ts(1))
        notification_repo.add(EMPLOYER_ID, ts(2))
        await notification_store.fetch()

        await notification_store.mark_read(first["_id"])

        assert notification_store.get(first["_id"]).read is True
        assert notification_repo.docs[first["_id"]]["read"] is True
        assert notification_store.unread_count() == 1

    async def test_mark_read_when_already_read_is_noop(self, notification_store, notification_repo):
        doc = notification_repo.add(EMPLOYER_ID, ts(1), read=True)
        await notification_store.fetch()

        await notification_store.mark_read(doc["_id"])

        assert "mark_read" not in notification_repo.calls
        assert notification_store.error is None

    async def test_mark_read_failure_rolls_back(self, notification_store, notification_repo):
        doc = notification_repo.add(EMPLOYER_ID, ts(1))
        await notification_store.fetch()
        notification_repo.fail_on.add("mark_read")

        with pytest.raises(WriteError):
            await notification_store.mark_read(doc["_id"])

        assert notification_store.get(doc["_id"]).read is False
        assert notification_store.unread_count() == 1

    async def test_mark_all_read_zeroes_aggregate(self, notification_store, notification_repo):
        for i in range(3):
            notification_repo.add(EMPLOYER_ID, ts(i))
        notification_repo.add(EMPLOYER_ID, ts(9), read=True)
        await notification_store.fetch()

        flipped = await notification_store.mark_all_read()

        assert flipped == 3
        assert notification_store.unread_count() == 0
        assert all(d["read"] for d in notification_repo.docs.values())

    async def test_mark_all_read_twice(self, notification_store, notification_repo):
        notification_repo.add(EMPLOYER_ID, ts(1))
        await notification_store.fetch()

        await notification_store.mark_all_read()
        assert await notification_store.mark_all_read() == 0
        assert notification_store.unread_count() == 0

    async def test_mark_all_read_failure_restores(self, notification_store, notification_repo):
        notification_repo.add(EMPLOYER_ID, ts(1))
        notification_repo.add(EMPLOYER_ID, ts(2))
        await notification_store.fetch()
        notification_repo.fail_on.add("mark_all_read")

        with pytest.raises(WriteError):
            await notification_store.mark_all_read()

        assert notification_store.unread_count() == 2
        assert "Marking all notifications read failed" in notification_store.error


class TestRoutes:

    @pytest.mark.parametrize(
        "fields, role, expected",
        [
            ({"type": "message", "related_id": "c1"}, ActorRole.EMPLOYER, "/employer/messages"),
            ({"type": "message", "related_id": "c1"}, ActorRole.WORKER, "/worker/messages"),
            ({"type": "application", "data": {"job_id": "j1"}}, ActorRole.EMPLOYER, "/employer/jobs/j1/applications"),
            ({"type": "application", "data": {"job_id": "j1"}}, ActorRole.WORKER, "/worker/applications"),
            ({"type": "job_match", "data": {"job_id": "j2"}}, ActorRole.WORKER, "/jobs/j2"),
            ({"type": "system"}, ActorRole.WORKER, None),
        ],
    )
    def test_resolve_route(self, fields, role, expected):
        assert resolve_route(_notification(**fields), role) == expected
