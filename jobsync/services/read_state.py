"""Restores "unread_count == unread messages not written by the reader".

Cross-store effects happen here as explicit, ordered calls. The per-message
flip is written before the counter so a message arriving in between is never
recorded as read.

The conversation keeps one counter, owned by whoever did not send the last
message. When the reader sent it, the counter belongs to the counterpart and
is recounted for them rather than cleared.
"""

from jobsync.errors import FetchError, SyncError, WriteError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.repositories.message_repository import MessageRepository
from jobsync.schemas.actor import Actor
from jobsync.schemas.conversation import Conversation
from jobsync.services.conversation_store import ConversationStore
from jobsync.services.message_store import MessageStore
from jobsync.services.notification_store import NotificationStore
from jobsync.services.store import collaborator_call
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


class ReadStateCoordinator:

    def __init__(
        self,
        actor: Actor,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        conversations: ConversationStore,
        messages: MessageStore,
        notifications: NotificationStore,
    ) -> None:
        self._actor = actor
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._conversations = conversations
        self._messages = messages
        self._notifications = notifications

    async def mark_conversation_read(self, conversation_id: str) -> int:
        """Mark every message from the counterpart read and reset the counter.

        Returns the number of messages flipped. Safe to repeat.
        """
        current = self._conversations.get(conversation_id)
        pending = None
        if current is not None and current.unread_count and current.last_message_sender_id != self._actor.id:
            pending = self._conversations.apply_unread_delta(conversation_id, -current.unread_count)

        try:
            with collaborator_call(WriteError, "Marking messages read"):
                flipped = await self._message_repo.mark_read_for_reader(conversation_id, self._actor.id)
        except SyncError as exc:
            # nothing was reset, so the optimistic drop has to go too
            self._conversations.discard(conversation_id, pending)
            raise self._conversations.record_error(exc)
        self._messages.mark_read_locally(conversation_id, self._actor.id)

        try:
            with collaborator_call(WriteError, "Resetting unread count"):
                row = await self._reset_counter(conversation_id)
        except SyncError as exc:
            self._conversations.discard(conversation_id, pending)
            raise self._conversations.record_error(exc)

        self._conversations.acknowledge(conversation_id, pending)
        if row is not None:
            self._conversations.upsert_from_event(Conversation.model_validate(row))
        logger.debug("Marked %d message(s) read in %s", flipped, conversation_id)

        try:
            await self._conversations.refresh()
        except FetchError:
            # the read state is durable; the list keeps the merged row and its error slot
            logger.info("Conversation list refresh after read failed for %s", conversation_id)

        try:
            await self._notifications.mark_related_read(conversation_id)
        except SyncError:
            logger.info("Related notifications for %s left unread", conversation_id)
        return flipped

    async def _reset_counter(self, conversation_id: str):
        doc = await self._conversation_repo.get(conversation_id)
        if doc is None:
            return None
        owner = self._actor.id
        if doc.get("last_message_sender_id") == self._actor.id:
            owner = Conversation.model_validate(doc).counterpart_id(self._actor.id)
        # normally zero for the reader; anything that landed after the flip stays counted
        remaining = await self._message_repo.count_unread_for_reader(conversation_id, owner)
        return await self._conversation_repo.set_unread(conversation_id, remaining)
