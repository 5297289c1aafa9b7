from typing import Dict, List, Optional

from jobsync.errors import FetchError, SyncError, WriteError
from jobsync.repositories.notification_repository import NotificationRepository
from jobsync.schemas.actor import Actor
from jobsync.schemas.notification import Notification, NotificationType
from jobsync.services.store import ObservableStore, collaborator_call
from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


def _sort_key(notification: Notification):
    return (notification.created_at, notification.id)


class NotificationStore(ObservableStore):
    """Newest-first mirror of the actor's notifications.

    The unread aggregate is always derived from the cache, never kept as a counter.
    """

    name = "notifications"

    def __init__(self, repo: NotificationRepository) -> None:
        super().__init__()
        self._repo = repo
        self._rows: Dict[str, Notification] = {}
        self._order: List[str] = []

    def dispose(self) -> None:
        super().dispose()
        self._rows.clear()
        self._order.clear()

    @property
    def notifications(self) -> List[Notification]:
        return [self._rows[nid] for nid in self._order]

    def get(self, notification_id: str) -> Optional[Notification]:
        return self._rows.get(notification_id)

    def unread_count(self) -> int:
        return sum(1 for notification in self._rows.values() if not notification.read)

    async def fetch(self, actor: Optional[Actor] = None) -> List[Notification]:
        """Replace the cache with the newest page, keeping rows written while it was in flight."""
        actor = actor or self._require_actor()
        with self._fetching() as mark:
            try:
                with collaborator_call(FetchError, "Fetching notifications"):
                    docs = await self._repo.list_for_user(actor.id)
            except FetchError as exc:
                raise self.record_error(exc)
            rows: Dict[str, Notification] = {}
            for doc in docs:
                notification = Notification.model_validate(doc)
                if self._observed_since(notification.id, mark) and notification.id in self._rows:
                    rows[notification.id] = self._rows[notification.id]
                else:
                    rows[notification.id] = notification
            for nid, cached in self._rows.items():
                if nid not in rows and self._observed_since(nid, mark):
                    rows[nid] = cached
            self._rows = rows
        self._resort()
        self._succeeded()
        self._changed()
        return self.notifications

    def apply_insert_event(self, notification: Notification) -> bool:
        return self._merge(notification)

    def apply_update_event(self, notification: Notification) -> bool:
        return self._merge(notification)

    def _merge(self, notification: Notification) -> bool:
        if notification.user_id != self._require_actor().id:
            logger.debug("Ignoring notification %s for another user", notification.id)
            return False
        if self._rows.get(notification.id) == notification:
            return False
        self._rows[notification.id] = notification
        self._observe(notification.id)
        self._resort()
        self._changed()
        return True

    async def mark_read(self, notification_id: str) -> None:
        actor = self._require_actor()
        previous = self._rows.get(notification_id)
        if previous is not None and previous.read:
            return
        if previous is not None:
            self._rows[notification_id] = previous.model_copy(update={"read": True})
            self._observe(notification_id)
            self._changed()
        try:
            with collaborator_call(WriteError, "Marking notification read"):
                await self._repo.mark_read(notification_id, actor.id)
        except SyncError as exc:
            if previous is not None and notification_id in self._rows:
                self._rows[notification_id] = previous
                self._observe(notification_id)
                self._changed()
            raise self.record_error(exc)
        self._succeeded()

    async def mark_all_read(self) -> int:
        actor = self._require_actor()
        flipped = [n for n in self._rows.values() if not n.read]
        marked = {}
        for notification in flipped:
            marked[notification.id] = notification.model_copy(update={"read": True})
            self._rows[notification.id] = marked[notification.id]
            self._observe(notification.id)
        if flipped:
            self._changed()
        try:
            with collaborator_call(WriteError, "Marking all notifications read"):
                await self._repo.mark_all_read(actor.id)
        except SyncError as exc:
            for notification in flipped:
                # a streamed update may have landed meanwhile; only undo our own flip
                if self._rows.get(notification.id) == marked[notification.id]:
                    self._rows[notification.id] = notification
                    self._observe(notification.id)
            self._changed()
            raise self.record_error(exc)
        self._succeeded()
        return len(flipped)

    async def mark_related_read(self, conversation_id: str) -> int:
        """Mark unread message notifications pointing at a conversation as read."""
        related = [
            n
            for n in self._rows.values()
            if not n.read
            and n.type is NotificationType.MESSAGE
            and conversation_id in (n.related_id, n.data.get("conversation_id"))
        ]
        for notification in related:
            await self.mark_read(notification.id)
        return len(related)

    def _resort(self) -> None:
        self._order = [n.id for n in sorted(self._rows.values(), key=_sort_key, reverse=True)]
