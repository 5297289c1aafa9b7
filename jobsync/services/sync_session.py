"""One actor's synchronized view: three stores, their change feeds, and the actions on them."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PayloadValidationError
from redis.exceptions import RedisError

from jobsync.errors import FetchError, SyncError, ValidationError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.repositories.message_repository import MessageRepository
from jobsync.repositories.notification_repository import NotificationRepository
from jobsync.schemas.actor import Actor
from jobsync.schemas.message import Message
from jobsync.schemas.events import parse_change_event
from jobsync.services.conversation_initiation import ConversationInitiation
from jobsync.services.conversation_store import ConversationStore
from jobsync.services.message_store import MessageStore
from jobsync.services.notification_routes import resolve_route
from jobsync.services.notification_store import NotificationStore
from jobsync.services.read_state import ReadStateCoordinator
from jobsync.utils.change_stream import NoopChangeStream
from jobsync.utils.logger import get_logger
from jobsync.utils.realtime_bus import NoopBus, user_channel
from jobsync.utils.websocket_manager import ConnectionManager


logger = get_logger(__name__)


class SyncSession:

    def __init__(
        self,
        actor: Actor,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        notification_repo: NotificationRepository,
        change_stream=None,
        bus=None,
        connections: Optional[ConnectionManager] = None,
        preview_length: int = 200,
    ) -> None:
        self.actor = actor
        self.conversations = ConversationStore(conversation_repo)
        self.messages = MessageStore(message_repo, conversation_repo, preview_length=preview_length)
        self.notifications = NotificationStore(notification_repo)
        self.read_state = ReadStateCoordinator(
            actor, message_repo, conversation_repo, self.conversations, self.messages, self.notifications
        )
        self.initiation = ConversationInitiation(conversation_repo)
        self.current_conversation_id: Optional[str] = None
        self._change_stream = change_stream or NoopChangeStream()
        self._bus = bus or NoopBus()
        self._connections = connections
        self._subscriptions: List[Any] = []
        self._tasks: List[asyncio.Task] = []
        self._changes: "asyncio.Queue[str]" = asyncio.Queue()
        self.active = False

    @property
    def stores(self):
        return (self.conversations, self.messages, self.notifications)

    # -- lifecycle

    async def init(self) -> None:
        for store in self.stores:
            store.init(self.actor)
            store.add_listener(self._on_store_changed)
        self.active = True
        await self._subscribe()
        self._tasks.append(asyncio.create_task(self._pump()))
        results = await asyncio.gather(self.conversations.list(), self.notifications.fetch(), return_exceptions=True)
        for result in results:
            if isinstance(result, SyncError):
                logger.warning("Initial load for %s incomplete: %s", self.actor.id, result)
            elif isinstance(result, BaseException):
                raise result
        logger.info("Sync session started for %s (%s)", self.actor.id, self.actor.role.value)

    async def dispose(self) -> None:
        self.active = False
        for sub in self._subscriptions:
            await sub.cancel()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._subscriptions.clear()
        self._tasks.clear()
        for store in self.stores:
            store.dispose()
        self.current_conversation_id = None
        logger.info("Sync session closed for %s", self.actor.id)

    async def _subscribe(self) -> None:
        actor_id = self.actor.id
        feeds = [
            ("conversations", {"$or": [{"employer_id": actor_id}, {"worker_id": actor_id}]}),
            ("messages", {"$or": [{"sender_id": actor_id}, {"recipient_id": actor_id}]}),
            ("notifications", {"user_id": actor_id}),
        ]
        for table, match in feeds:
            sub = await self._change_stream.subscribe(table, self.dispatch, match=match)
            self._subscriptions.append(sub)
            self._tasks.append(asyncio.create_task(sub.run()))

    # -- change stream

    async def dispatch(self, raw: Any) -> None:
        """Validate an untrusted change event and merge it into the owning store."""
        if not self.active:
            return
        try:
            event, entity = parse_change_event(raw)
        except PayloadValidationError as exc:
            logger.warning("Dropping malformed change event: %s", exc)
            return

        if event.table == "conversations":
            self.conversations.upsert_from_event(entity)
        elif event.table == "messages":
            await self._merge_message(entity, inserted=event.operation == "insert")
        elif event.operation == "insert":
            self.notifications.apply_insert_event(entity)
        else:
            self.notifications.apply_update_event(entity)

    async def _merge_message(self, message: Message, inserted: bool) -> None:
        if not inserted:
            self.messages.apply_update_from_event(message)
            return
        self.messages.append_from_event(message)
        if not self.conversations.note_incoming_message(message):
            # first message of a conversation this session has not listed yet
            try:
                await self.conversations.refresh()
            except FetchError:
                logger.info("Could not list new conversation %s yet", message.conversation_id)

    # -- actions

    async def focus(self, conversation_id: Optional[str]) -> None:
        """Change the focused conversation; a new non-null focus loads it and marks it read."""
        if conversation_id == self.current_conversation_id:
            return
        self.current_conversation_id = conversation_id
        if conversation_id is None:
            self.messages.clear()
            return
        load_error = None
        try:
            await self.messages.load(conversation_id)
        except SyncError as exc:
            load_error = exc
        # after the page is in place, so the local read flip lands on its rows
        await self.read_state.mark_conversation_read(conversation_id)
        if load_error is not None:
            raise load_error

    async def send(self, body: str) -> Message:
        conversation_id = self.current_conversation_id
        recipient_id = self.conversations.counterpart_id(conversation_id) if conversation_id else None
        message, conversation = await self.messages.send(conversation_id, body, recipient_id=recipient_id)
        self.conversations.upsert_from_event(conversation)
        return message

    async def start_conversation(
        self, employer_id: str, worker_id: str, application_id: Optional[str] = None
    ) -> str:
        if self.actor.id not in (employer_id, worker_id):
            raise self.initiation.record_error(ValidationError("Actor must be one of the conversation participants"))
        conversation_id = await self.initiation.start_conversation(employer_id, worker_id, application_id)
        if self.conversations.get(conversation_id) is None:
            try:
                await self.conversations.refresh()
            except FetchError:
                logger.info("Started %s but could not refresh the list", conversation_id)
        return conversation_id

    async def mark_conversation_read(self, conversation_id: str) -> int:
        return await self.read_state.mark_conversation_read(conversation_id)

    async def mark_notification_read(self, notification_id: str) -> None:
        await self.notifications.mark_read(notification_id)

    async def mark_all_notifications_read(self) -> int:
        return await self.notifications.mark_all_read()

    # -- read model

    def snapshot(self) -> Dict[str, Any]:
        return {
            "actor": self.actor.model_dump(mode="json"),
            "current_conversation_id": self.current_conversation_id,
            "conversations": [c.model_dump(mode="json") for c in self.conversations.conversations],
            "messages": [m.model_dump(mode="json") for m in self.messages.messages],
            "notifications": [
                dict(n.model_dump(mode="json"), route=resolve_route(n, self.actor.role))
                for n in self.notifications.notifications
            ],
            "unread": {
                "messages": self.conversations.unread_count(),
                "notifications": self.notifications.unread_count(),
            },
            "errors": {
                "conversations": self.conversations.error or self.initiation.error,
                "messages": self.messages.error,
                "notifications": self.notifications.error,
            },
        }

    # -- view fan-out

    def _on_store_changed(self, store_name: str) -> None:
        if self.active:
            self._changes.put_nowait(store_name)

    async def _pump(self) -> None:
        while True:
            changed = {await self._changes.get()}
            while not self._changes.empty():
                changed.add(self._changes.get_nowait())
            try:
                payload = json.dumps({"type": "sync", "changed": sorted(changed), "state": self.snapshot()}, default=str)
                await self._publish(payload)
            except Exception:
                # one undeliverable frame must not stop later ones
                logger.exception("Publishing %s for %s failed", sorted(changed), self.actor.id)

    async def _publish(self, payload: str) -> None:
        if self._bus.enabled:
            try:
                await self._bus.publish(user_channel(self.actor.id), payload)
            except RedisError as exc:
                logger.warning("Fan-out for %s failed: %s", self.actor.id, exc)
        elif self._connections is not None:
            await self._connections.send_personal_message(self.actor.id, payload)


SessionFactory = Callable[[Actor], SyncSession]


class SessionRegistry:
    """Lazily started sessions, one per actor."""

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: Dict[str, SyncSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, actor: Actor) -> SyncSession:
        lock = self._locks.setdefault(actor.id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(actor.id)
            if session is not None and session.actor.role is not actor.role:
                await session.dispose()
                session = None
            if session is None:
                session = self._factory(actor)
                await session.init()
                self._sessions[actor.id] = session
            return session

    def peek(self, actor_id: str) -> Optional[SyncSession]:
        return self._sessions.get(actor_id)

    async def close(self, actor_id: str) -> None:
        session = self._sessions.pop(actor_id, None)
        self._locks.pop(actor_id, None)
        if session is not None:
            await session.dispose()

    async def close_all(self) -> None:
        for actor_id in list(self._sessions):
            await self.close(actor_id)
