"""Shared fixtures: actors, in-memory repositories and initialized stores."""

import pytest

from jobsync.schemas.actor import Actor, ActorRole
from jobsync.services.conversation_store import ConversationStore
from jobsync.services.message_store import MessageStore
from jobsync.services.notification_store import NotificationStore
from jobsync.services.read_state import ReadStateCoordinator
from jobsync.services.sync_session import SyncSession

from fakes import (
    EMPLOYER_ID,
    WORKER_ID,
    FakeChangeStream,
    FakeConversationRepository,
    FakeMessageRepository,
    FakeNotificationRepository,
    RecordingConnections,
)


@pytest.fixture
def employer():
    return Actor(id=EMPLOYER_ID, role=ActorRole.EMPLOYER)


@pytest.fixture
def worker():
    return Actor(id=WORKER_ID, role=ActorRole.WORKER)


@pytest.fixture
def conversation_repo():
    return FakeConversationRepository(
        profiles={
            EMPLOYER_ID: {"full_name": "Erin Employer", "company_name": "Acme"},
            WORKER_ID: {"full_name": "Wes Worker"},
        }
    )


@pytest.fixture
def message_repo():
    return FakeMessageRepository()


@pytest.fixture
def notification_repo():
    return FakeNotificationRepository()


@pytest.fixture
def conversation_store(conversation_repo, employer):
    store = ConversationStore(conversation_repo)
    store.init(employer)
    yield store
    store.dispose()


@pytest.fixture
def message_store(message_repo, conversation_repo, employer):
    store = MessageStore(message_repo, conversation_repo, preview_length=20)
    store.init(employer)
    yield store
    store.dispose()


@pytest.fixture
def notification_store(notification_repo, employer):
    store = NotificationStore(notification_repo)
    store.init(employer)
    yield store
    store.dispose()


@pytest.fixture
def coordinator(employer, message_repo, conversation_repo, conversation_store, message_store, notification_store):
    return ReadStateCoordinator(
        employer, message_repo, conversation_repo, conversation_store, message_store, notification_store
    )


@pytest.fixture
def change_stream():
    return FakeChangeStream()


@pytest.fixture
def connections():
    return RecordingConnections()


@pytest.fixture
async def session(employer, conversation_repo, message_repo, notification_repo, change_stream, connections):
    """A started session for the employer, wired to the fake change stream."""
    sync = SyncSession(
        employer,
        conversation_repo,
        message_repo,
        notification_repo,
        change_stream=change_stream,
        connections=connections,
        preview_length=20,
    )
    await sync.init()
    yield sync
    await sync.dispose()
