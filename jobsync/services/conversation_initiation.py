"""Find-or-create for the conversation between an employer and a worker.

The lookup key is the exact triple (employer, worker, application); "no
application" is its own key. Two sessions racing on the same triple are
settled by the unique index on the collection: the loser's insert fails with
a duplicate key and it returns the winner's row. Without that index the
loser would create a second conversation, so callers re-list rather than
assume uniqueness.
"""

from typing import Optional

from pymongo.errors import DuplicateKeyError

from jobsync.errors import SyncError, ValidationError, WriteError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.services.store import collaborator_call
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


class ConversationInitiation:

    def __init__(self, repo: ConversationRepository) -> None:
        self._repo = repo
        self.error: Optional[str] = None

    async def start_conversation(self, employer_id: str, worker_id: str, application_id: Optional[str] = None) -> str:
        if not employer_id or not worker_id:
            raise self.record_error(ValidationError("Both an employer and a worker are required"))
        if employer_id == worker_id:
            raise self.record_error(ValidationError("Cannot start a conversation with yourself"))
        application_id = application_id or None

        try:
            existing = await self._find(employer_id, worker_id, application_id)
            if existing:
                self.error = None
                return existing
            try:
                with collaborator_call(WriteError, "Creating conversation"):
                    created = await self._repo.create(employer_id, worker_id, application_id)
            except WriteError as exc:
                if not isinstance(exc.__cause__, DuplicateKeyError):
                    raise
                logger.info("Lost creation race for %s/%s/%s", employer_id, worker_id, application_id)
                existing = await self._find(employer_id, worker_id, application_id)
                if not existing:
                    raise
                self.error = None
                return existing
        except SyncError as exc:
            raise self.record_error(exc)

        logger.info("Created conversation %s", created["_id"])
        self.error = None
        return created["_id"]

    async def _find(self, employer_id: str, worker_id: str, application_id: Optional[str]) -> Optional[str]:
        with collaborator_call(WriteError, "Looking up conversation"):
            matches = await self._repo.find_by_parties(employer_id, worker_id, application_id)
        return matches[0]["_id"] if matches else None

    def record_error(self, exc: SyncError) -> SyncError:
        self.error = str(exc)
        logger.warning("Conversation initiation: %s", exc)
        return exc
