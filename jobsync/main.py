from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from jobsync.config import get_settings
from jobsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from jobsync.errors import FetchError, SyncError, ValidationError, WriteError
from jobsync.repositories.conversation_repository import ConversationRepository
from jobsync.repositories.message_repository import MessageRepository
from jobsync.repositories.notification_repository import NotificationRepository
from jobsync.routers.conversations import router as conversations_router
from jobsync.routers.notifications import router as notifications_router
from jobsync.routers.sync import router as sync_router
from jobsync.schemas.actor import Actor
from jobsync.services.sync_session import SessionRegistry, SyncSession
from jobsync.utils.change_stream import get_change_stream
from jobsync.utils.logger import init_app_logger
from jobsync.utils.realtime_bus import close_bus, get_bus
from jobsync.utils.websocket_manager import manager


def build_registry(db, settings) -> SessionRegistry:
    conversation_repo = ConversationRepository(db)
    message_repo = MessageRepository(db)
    notification_repo = NotificationRepository(db)
    change_stream = get_change_stream(db, settings)
    bus = get_bus(settings.redis_url)

    def factory(actor: Actor) -> SyncSession:
        return SyncSession(
            actor,
            conversation_repo,
            message_repo,
            notification_repo,
            change_stream=change_stream,
            bus=bus,
            connections=manager,
            preview_length=settings.message_preview_length,
        )

    return SessionRegistry(factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger = init_app_logger(settings)
    db = await connect_to_mongo()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()
    app.state.registry = build_registry(db, settings)
    logger.info("jobsync started")
    try:
        yield
    finally:
        await app.state.registry.close_all()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="jobsync", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(notifications_router)
app.include_router(sync_router)


ERROR_STATUS = (
    (ValidationError, 422),
    (FetchError, 503),
    (WriteError, 502),
)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    body = {"detail": str(exc), "error": type(exc).__name__}
    message_id = getattr(exc, "message_id", None)
    if message_id:
        body["message_id"] = message_id
    return JSONResponse(status_code=status, content=body)


@app.get("/health")
async def health():
    db = get_database()
    collections = await db.list_collection_names()
    return {"status": "ok", "collections": sorted(collections)}
