"""Local view of the actor's conversations.

Unread counters are held in two phases: the authoritative row as last seen
from storage, and pending deltas applied for instant feedback. A pending
delta is dropped on the first authoritative observation after its write was
acknowledged, so it is never compounded with the server value.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from jobsync.errors import FetchError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.schemas.actor import Actor
from jobsync.schemas.conversation import Conversation
from jobsync.schemas.message import Message
from jobsync.services.store import ObservableStore, collaborator_call
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class PendingUnread:

    delta: int
    acknowledged: bool = False


def _sort_key(conversation: Conversation):
    return (conversation.updated_at, conversation.id)


def _with_profiles(row: Conversation, source: Conversation) -> Conversation:
    return row.model_copy(
        update={"employer": source.employer, "worker": source.worker, "application": source.application}
    )


class ConversationStore(ObservableStore):

    name = "conversations"

    def __init__(self, repo: ConversationRepository) -> None:
        super().__init__()
        self._repo = repo
        self._rows: Dict[str, Conversation] = {}
        self._order: List[str] = []
        self._pending: Dict[str, List[PendingUnread]] = {}
        self._counted: Dict[str, Dict[str, datetime]] = {}

    def dispose(self) -> None:
        super().dispose()
        self._rows.clear()
        self._order.clear()
        self._pending.clear()
        self._counted.clear()

    # -- read accessors

    @property
    def conversations(self) -> List[Conversation]:
        return [self._visible(self._rows[cid]) for cid in self._order]

    def get(self, conversation_id: str) -> Optional[Conversation]:
        row = self._rows.get(conversation_id)
        return self._visible(row) if row is not None else None

    def counterpart_id(self, conversation_id: str) -> Optional[str]:
        row = self._rows.get(conversation_id)
        if row is None:
            return None
        return row.counterpart_id(self._require_actor().id)

    def unread_count(self) -> int:
        """Sum of unread counters, skipping conversations whose last message is the actor's own."""
        actor_id = self._require_actor().id
        total = 0
        for conversation in self.conversations:
            if conversation.last_message_sender_id == actor_id:
                continue
            total += conversation.unread_count
        return total

    def _visible(self, row: Conversation) -> Conversation:
        pending = self._pending.get(row.id)
        if not pending:
            return row
        count = max(0, row.unread_count + sum(p.delta for p in pending))
        return row.model_copy(update={"unread_count": count})

    # -- collaborator reads

    async def list(self, actor: Optional[Actor] = None) -> List[Conversation]:
        """Fetch the actor's conversations and merge them into the cache by id.

        A cached row written while the page was in flight, or newer than the
        page's copy, is kept. Rows missing from the page are dropped.
        """
        actor = actor or self._require_actor()
        with self._fetching() as mark:
            try:
                with collaborator_call(FetchError, "Fetching conversations"):
                    docs = await self._repo.list_for_user(actor.id)
            except FetchError as exc:
                raise self.record_error(exc)
            self._merge_page([Conversation.model_validate(doc) for doc in docs], mark)
        self._resort()
        self._succeeded()
        self._changed()
        return self.conversations

    async def refresh(self) -> List[Conversation]:
        return await self.list()

    def _merge_page(self, rows: List[Conversation], mark: int) -> None:
        merged: Dict[str, Conversation] = {}
        for row in rows:
            cached = self._rows.get(row.id)
            if cached is not None and (
                cached.updated_at > row.updated_at
                or (cached.updated_at == row.updated_at and self._observed_since(row.id, mark))
            ):
                merged[row.id] = _with_profiles(cached, row) if row.is_enriched else cached
                continue
            merged[row.id] = row
            self._settle(row.id)
            self._prune_counted(row)
        for cid, cached in self._rows.items():
            if cid not in merged and self._observed_since(cid, mark):
                merged[cid] = cached
        self._rows = merged
        for cid in list(self._pending):
            if cid not in self._rows:
                del self._pending[cid]
        for cid in list(self._counted):
            if cid not in self._rows:
                del self._counted[cid]

    # -- reconciliation

    def upsert_from_event(self, conversation: Conversation) -> bool:
        """Merge an authoritative row by identity. Idempotent, last write wins."""
        actor_id = self._require_actor().id
        if not conversation.involves(actor_id):
            logger.debug("Ignoring conversation %s not involving %s", conversation.id, actor_id)
            return False
        existing = self._rows.get(conversation.id)
        if existing is not None and not conversation.is_enriched:
            conversation = _with_profiles(conversation, existing)
        self._rows[conversation.id] = conversation
        self._observe(conversation.id)
        self._settle(conversation.id)
        self._prune_counted(conversation)
        self._resort()
        self._changed()
        return True

    def apply_unread_delta(self, conversation_id: str, delta: int, acknowledged: bool = False) -> Optional[PendingUnread]:
        if conversation_id not in self._rows:
            return None
        pending = PendingUnread(delta=delta, acknowledged=acknowledged)
        self._pending.setdefault(conversation_id, []).append(pending)
        self._changed()
        return pending

    def acknowledge(self, conversation_id: str, pending: Optional[PendingUnread]) -> None:
        """The write behind ``pending`` resolved; the next authoritative row replaces it."""
        if pending is not None:
            pending.acknowledged = True

    def discard(self, conversation_id: str, pending: Optional[PendingUnread]) -> None:
        """Roll back a delta whose write failed."""
        items = self._pending.get(conversation_id)
        if not items or pending is None:
            return
        self._pending[conversation_id] = [p for p in items if p is not pending]
        if not self._pending[conversation_id]:
            del self._pending[conversation_id]
        self._changed()

    def note_incoming_message(self, message: Message) -> bool:
        """Optimistically count a streamed message from someone else.

        Returns False when the conversation is not cached, so the caller can refresh.
        """
        actor_id = self._require_actor().id
        row = self._rows.get(message.conversation_id)
        if row is None:
            return False
        if message.sender_id == actor_id or message.read:
            return True
        if row.updated_at >= message.created_at:
            # the conversation update for this message was already observed
            return True
        counted = self._counted.setdefault(message.conversation_id, {})
        if message.id in counted:
            return True
        counted[message.id] = message.created_at
        # the sender already wrote the message, so only the authoritative echo is outstanding
        self.apply_unread_delta(message.conversation_id, 1, acknowledged=True)
        return True

    def _settle(self, conversation_id: str) -> None:
        items = self._pending.get(conversation_id)
        if not items:
            return
        remaining = [p for p in items if not p.acknowledged]
        if remaining:
            self._pending[conversation_id] = remaining
        else:
            del self._pending[conversation_id]

    def _prune_counted(self, row: Conversation) -> None:
        """Forget counted messages the row already covers; its timestamp guards them now."""
        counted = self._counted.get(row.id)
        if not counted:
            return
        for message_id, created_at in list(counted.items()):
            if created_at <= row.updated_at:
                del counted[message_id]
        if not counted:
            del self._counted[row.id]

    def _resort(self) -> None:
        self._order = [row.id for row in sorted(self._rows.values(), key=_sort_key, reverse=True)]
