"""Tests for Redis view fan-out, run against fakeredis."""

import asyncio
import json

import pytest
from fakeredis.aioredis import FakeRedis

from jobsync.services.sync_session import SyncSession
from jobsync.utils import realtime_bus
from jobsync.utils.realtime_bus import NoopBus, RedisBus, user_channel

from fakes import EMPLOYER_ID, FakeChangeStream


@pytest.fixture
async def bus():
    client = FakeRedis()
    try:
        yield RedisBus(client)
    finally:
        await client.flushall()
        await client.aclose()


async def _collect(bus, channel):
    received = asyncio.Queue()

    async def on_message(data):
        await received.put(data)

    subscription = await bus.subscribe(channel, on_message)
    task = asyncio.create_task(subscription.run())
    return received, subscription, task


async def _stop(subscription, task):
    await subscription.cancel()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class TestRedisBus:

    async def test_publish_reaches_subscriber(self, bus):
        received, subscription, task = await _collect(bus, user_channel("u1"))

        await bus.publish(user_channel("u1"), "hello")

        assert await asyncio.wait_for(received.get(), timeout=3) == "hello"
        await _stop(subscription, task)

    async def test_channels_are_per_user(self, bus):
        received, subscription, task = await _collect(bus, user_channel("u1"))

        await bus.publish(user_channel("u2"), "not for u1")
        await bus.publish(user_channel("u1"), "for u1")

        assert await asyncio.wait_for(received.get(), timeout=3) == "for u1"
        await _stop(subscription, task)


class TestSessionFanOut:

    async def test_session_publishes_snapshots(
        self, bus, employer, conversation_repo, message_repo, notification_repo
    ):
        conversation_repo.add(EMPLOYER_ID, "wrk-1")
        received, subscription, task = await _collect(bus, user_channel(EMPLOYER_ID))
        session = SyncSession(
            employer, conversation_repo, message_repo, notification_repo, change_stream=FakeChangeStream(), bus=bus
        )

        await session.init()
        frame = json.loads(await asyncio.wait_for(received.get(), timeout=3))

        assert frame["type"] == "sync"
        assert frame["state"]["actor"] == {"id": EMPLOYER_ID, "role": "employer"}
        await session.dispose()
        await _stop(subscription, task)


class TestBusFactory:

    async def test_without_url_is_noop(self):
        await realtime_bus.close_bus()

        bus = realtime_bus.get_bus(None)

        assert isinstance(bus, NoopBus)
        assert realtime_bus.get_bus("redis://ignored") is bus
        await realtime_bus.close_bus()
