from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from jobsync.models.notification import NotificationDocument
from jobsync.repositories.conversation_repository import normalize, to_object_id


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    async def list_for_user(self, user_id: str) -> List[NotificationDocument]:
        cur = self.collection.find({"user_id": user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        items = await cur.to_list(length=None)
        return [normalize(it) for it in items]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": to_object_id(notification_id), "user_id": user_id},
            {"$set": {"read": True}},
        )
        return bool(result.modified_count)

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.collection.update_many(
            {"user_id": user_id, "read": False},
            {"$set": {"read": True}},
        )
        return result.modified_count or 0
