import bisect
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from jobsync.errors import FetchError, InvalidMessageError, SendError, SyncError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.repositories.message_repository import MessageRepository
from jobsync.schemas.conversation import Conversation
from jobsync.schemas.message import Message
from jobsync.services.store import ObservableStore, collaborator_call
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


def _order_key(message: Message):
    return message.order_key


class MessageStore(ObservableStore):
    """Ordered history of the single focused conversation."""

    name = "messages"

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        preview_length: int = 200,
    ) -> None:
        super().__init__()
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._preview_length = preview_length
        self.conversation_id: Optional[str] = None
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}
        self._generation = 0

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def dispose(self) -> None:
        super().dispose()
        self.clear()

    def clear(self) -> None:
        self._generation += 1
        self.conversation_id = None
        self._messages = []
        self._by_id = {}
        self._changed()

    async def load(self, conversation_id: str) -> List[Message]:
        if conversation_id != self.conversation_id:
            self.conversation_id = conversation_id
            self._messages = []
            self._by_id = {}
        self._generation += 1
        generation = self._generation
        try:
            with collaborator_call(FetchError, "Fetching messages"):
                docs = await self._message_repo.list_for_conversation(conversation_id)
        except FetchError as exc:
            if generation != self._generation:
                return self.messages
            raise self.record_error(exc)
        if generation != self._generation or conversation_id != self.conversation_id:
            logger.debug("Discarding stale message page for %s", conversation_id)
            return self.messages
        # keep anything streamed in while the page was in flight
        merged = dict(self._by_id)
        for doc in docs:
            message = Message.model_validate(doc)
            merged[message.id] = message
        self._messages = sorted(merged.values(), key=_order_key)
        self._by_id = {message.id: message for message in self._messages}
        self._succeeded()
        self._changed()
        return self.messages

    def append_from_event(self, message: Message) -> bool:
        """Insert a message of the focused conversation once, in (created_at, id) order."""
        if message.conversation_id != self.conversation_id:
            return False
        if message.id in self._by_id:
            return False
        bisect.insort(self._messages, message, key=_order_key)
        self._by_id[message.id] = message
        self._changed()
        return True

    def apply_update_from_event(self, message: Message) -> bool:
        existing = self._by_id.get(message.id)
        if existing is None:
            return self.append_from_event(message)
        if existing == message:
            return False
        index = self._messages.index(existing)
        if existing.order_key == message.order_key:
            self._messages[index] = message
        else:
            del self._messages[index]
            bisect.insort(self._messages, message, key=_order_key)
        self._by_id[message.id] = message
        self._changed()
        return True

    def mark_read_locally(self, conversation_id: str, reader_id: str) -> int:
        if conversation_id != self.conversation_id:
            return 0
        flipped = 0
        for index, message in enumerate(self._messages):
            if message.read or message.sender_id == reader_id:
                continue
            updated = message.model_copy(update={"read": True})
            self._messages[index] = updated
            self._by_id[updated.id] = updated
            flipped += 1
        if flipped:
            self._changed()
        return flipped

    async def send(
        self, conversation_id: Optional[str], body: str, recipient_id: Optional[str] = None
    ) -> Tuple[Message, Conversation]:
        """Write a message, then bump the parent conversation summary.

        The two writes are not atomic. If the second fails the message already
        exists, and the resulting ``SendError`` carries its id.
        """
        actor = self._require_actor()
        content = (body or "").strip()
        if not conversation_id:
            raise self.record_error(InvalidMessageError("No conversation is focused"))
        if not content:
            raise self.record_error(InvalidMessageError("Message content cannot be empty"))

        if recipient_id is None:
            try:
                with collaborator_call(SendError, "Resolving conversation"):
                    convo = await self._conversation_repo.get(conversation_id)
            except SyncError as exc:
                raise self.record_error(exc)
            if convo is None:
                raise self.record_error(InvalidMessageError(f"Conversation {conversation_id} does not exist"))
            recipient_id = Conversation.model_validate(convo).counterpart_id(actor.id)
            if recipient_id is None:
                raise self.record_error(InvalidMessageError("Actor is not a participant of this conversation"))

        now = datetime.now(timezone.utc)
        # BSON dates keep milliseconds; match what the stream echo will carry
        sent_at = now.replace(microsecond=now.microsecond // 1000 * 1000)
        try:
            with collaborator_call(SendError, "Sending message"):
                saved = await self._message_repo.save_message(
                    conversation_id=conversation_id,
                    sender_id=actor.id,
                    recipient_id=recipient_id,
                    content=content,
                    created_at=sent_at,
                )
        except SyncError as exc:
            raise self.record_error(exc)
        message = Message.model_validate(saved)
        # the stream echo of the same insert may already have landed
        self.append_from_event(message)

        preview = content[: self._preview_length]
        try:
            with collaborator_call(SendError, "Updating conversation summary"):
                updated = await self._conversation_repo.update_on_new_message(
                    conversation_id, preview, actor.id, message.created_at
                )
        except SyncError as exc:
            raise self.record_error(SendError(str(exc), message_id=message.id)) from exc
        if updated is None:
            raise self.record_error(
                SendError(f"Conversation {conversation_id} vanished after sending", message_id=message.id)
            )
        self._succeeded()
        return message, Conversation.model_validate(updated)
