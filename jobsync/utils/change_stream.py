"""Row change feed built on MongoDB change streams.

Subscriptions deliver ``{"table", "operation", "row"}`` dicts. Delivery is
at-least-once: after a dropped cursor the stream resumes from the last seen
resume token, which can replay events.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from jobsync.utils.logger import get_logger


logger = get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]

_OPERATIONS = {"insert": "insert", "update": "update", "replace": "update"}


def build_pipeline(match: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    stage: Dict[str, Any] = {"operationType": {"$in": list(_OPERATIONS)}}
    for field, value in (match or {}).items():
        if field.startswith("$"):
            # logical operators hold row predicates; prefix each leaf field
            stage[field] = [
                {f"fullDocument.{k}": v for k, v in clause.items()} for clause in value
            ]
        else:
            stage[f"fullDocument.{field}"] = value
    return [{"$match": stage}]


def to_raw_event(table: str, change: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    operation = _OPERATIONS.get(change.get("operationType", ""))
    row = change.get("fullDocument")
    if operation is None or row is None:
        return None
    return {"table": table, "operation": operation, "row": row}


class ChangeSubscription:

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        table: str,
        on_event: EventHandler,
        match: Optional[Dict[str, Any]] = None,
        retry_delay: float = 0.5,
        max_retry_delay: float = 10.0,
    ) -> None:
        self._db = db
        self.table = table
        self._on_event = on_event
        self._pipeline = build_pipeline(match)
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._resume_token: Optional[Dict[str, Any]] = None
        self._running = True

    async def run(self) -> None:
        delay = self._retry_delay
        while self._running:
            try:
                async with self._db[self.table].watch(
                    self._pipeline,
                    full_document="updateLookup",
                    resume_after=self._resume_token,
                ) as stream:
                    logger.debug("Watching %s", self.table)
                    async for change in stream:
                        self._resume_token = change.get("_id")
                        delay = self._retry_delay
                        raw = to_raw_event(self.table, change)
                        if raw is not None:
                            await self._on_event(raw)
                        if not self._running:
                            return
            except PyMongoError as exc:
                if not self._running:
                    return
                logger.warning("Change stream on %s dropped (%s); retrying in %.1fs", self.table, exc, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_retry_delay)

    async def cancel(self) -> None:
        self._running = False


class ChangeStreamClient:

    enabled = True

    def __init__(self, db: AsyncIOMotorDatabase, retry_delay: float = 0.5, max_retry_delay: float = 10.0) -> None:
        self._db = db
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay

    async def subscribe(
        self, table: str, on_event: EventHandler, match: Optional[Dict[str, Any]] = None
    ) -> ChangeSubscription:
        return ChangeSubscription(
            self._db,
            table,
            on_event,
            match=match,
            retry_delay=self._retry_delay,
            max_retry_delay=self._max_retry_delay,
        )


class NoopChangeStream:
    """Used when the deployment has no change streams; stores then only see their own writes."""

    enabled = False

    async def subscribe(self, table: str, on_event: EventHandler, match: Optional[Dict[str, Any]] = None):
        class _Sub:
            async def run(self):
                await asyncio.Future()

            async def cancel(self):
                return

        return _Sub()


def get_change_stream(db: AsyncIOMotorDatabase, settings):
    if not settings.change_streams_enabled:
        return NoopChangeStream()
    return ChangeStreamClient(
        db,
        retry_delay=settings.change_stream_retry_delay,
        max_retry_delay=settings.change_stream_max_retry_delay,
    )
