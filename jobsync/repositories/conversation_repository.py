from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from jobsync.errors import ValidationError
from jobsync.models.conversation import ConversationDocument, ConversationListItem


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as exc:
        raise ValidationError(f"Invalid id: {value!r}") from exc


def normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None and "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        # A missing application is stored as null, so (a, b, null) is unique too
        await self.collection.create_index(
            [("employer_id", ASCENDING), ("worker_id", ASCENDING), ("application_id", ASCENDING)],
            unique=True,
            name="uniq_parties_application",
        )
        await self.collection.create_index([("employer_id", ASCENDING), ("updated_at", DESCENDING)])
        await self.collection.create_index([("worker_id", ASCENDING), ("updated_at", DESCENDING)])

    async def list_for_user(self, user_id: str) -> List[ConversationListItem]:
        """Conversations where the user is either participant, newest activity first.

        Participant and application display fields are joined in.
        """
        pipeline: List[Dict[str, Any]] = [
            {"$match": {"$or": [{"employer_id": user_id}, {"worker_id": user_id}]}},
            {"$sort": {"updated_at": DESCENDING, "_id": DESCENDING}},
            self._lookup_profile("employer_id", "employer"),
            self._lookup_profile("worker_id", "worker"),
            {
                "$lookup": {
                    "from": "applications",
                    "let": {"app_id": "$application_id"},
                    "pipeline": [
                        {"$match": {"$expr": {"$eq": [{"$toString": "$_id"}, "$$app_id"]}}},
                        {
                            "$lookup": {
                                "from": "jobs",
                                "let": {"job_id": "$job_id"},
                                "pipeline": [
                                    {"$match": {"$expr": {"$eq": [{"$toString": "$_id"}, "$$job_id"]}}},
                                    {"$project": {"title": 1}},
                                ],
                                "as": "job",
                            }
                        },
                        {
                            "$project": {
                                "job_id": 1,
                                "status": 1,
                                "job_title": {"$first": "$job.title"},
                            }
                        },
                    ],
                    "as": "application",
                }
            },
            {
                "$set": {
                    "employer": {"$first": "$employer"},
                    "worker": {"$first": "$worker"},
                    "application": {"$first": "$application"},
                }
            },
        ]
        items = await self.collection.aggregate(pipeline).to_list(length=None)
        for it in items:
            normalize(it)
            for key in ("employer", "worker", "application"):
                normalize(it.get(key))
        return items

    def _lookup_profile(self, local_field: str, alias: str) -> Dict[str, Any]:
        return {
            "$lookup": {
                "from": "profiles",
                "let": {"pid": f"${local_field}"},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": [{"$toString": "$_id"}, "$$pid"]}}},
                    {"$project": {"full_name": 1, "company_name": 1, "photo_url": 1}},
                ],
                "as": alias,
            }
        }

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        return normalize(await self.collection.find_one({"_id": to_object_id(conversation_id)}))

    async def find_by_parties(
        self, employer_id: str, worker_id: str, application_id: Optional[str]
    ) -> List[Dict[str, Any]]:
        query = {"employer_id": employer_id, "worker_id": worker_id, "application_id": application_id}
        cur = self.collection.find(query, {"_id": 1}).sort("_id", ASCENDING)
        items = await cur.to_list(length=None)
        return [normalize(it) for it in items]

    async def create(self, employer_id: str, worker_id: str, application_id: Optional[str]) -> ConversationDocument:
        now = datetime.now(timezone.utc)
        doc: ConversationDocument = {
            "employer_id": employer_id,
            "worker_id": worker_id,
            "application_id": application_id,
            "last_message": None,
            "last_message_sender_id": None,
            "unread_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def update_on_new_message(
        self, conversation_id: str, preview: str, sender_id: str, sent_at: datetime
    ) -> Optional[ConversationDocument]:
        # the counter belongs to the recipient; it restarts when the other side sends
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            [
                {
                    "$set": {
                        "unread_count": {
                            "$cond": [
                                {"$eq": ["$last_message_sender_id", sender_id]},
                                {"$add": [{"$ifNull": ["$unread_count", 0]}, 1]},
                                1,
                            ]
                        },
                        "last_message": {"$literal": preview},
                        "last_message_sender_id": sender_id,
                        "updated_at": sent_at,
                    }
                }
            ],
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    async def set_unread(self, conversation_id: str, count: int) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {"$set": {"unread_count": count}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)
