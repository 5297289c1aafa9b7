import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from jobsync.errors import SyncError
from jobsync.services.sync_session import SessionRegistry, SyncSession
from jobsync.utils.dependencies import get_ws_registry, resolve_actor
from jobsync.utils.logger import get_logger
from jobsync.utils.realtime_bus import get_bus, user_channel
from jobsync.utils.websocket_manager import manager


router = APIRouter(tags=["sync"])
logger = get_logger(__name__)


async def handle_command(session: SyncSession, msg: dict) -> dict:
    """Run one client command; returns the reply frame."""
    kind = msg.get("type")
    if kind == "ping":
        return {"type": "pong"}
    if kind == "focus":
        await session.focus(msg.get("conversation_id"))
    elif kind == "send":
        message = await session.send(msg.get("content", ""))
        return {"type": "ack", "message_id": message.id, "client_message_id": msg.get("client_message_id")}
    elif kind == "start_conversation":
        conversation_id = await session.start_conversation(
            msg.get("employer_id", ""), msg.get("worker_id", ""), msg.get("application_id")
        )
        return {"type": "conversation", "conversation_id": conversation_id}
    elif kind == "mark_read":
        await session.mark_conversation_read(msg.get("conversation_id", ""))
    elif kind == "notification_read":
        await session.mark_notification_read(msg.get("notification_id", ""))
    elif kind == "notifications_read_all":
        await session.mark_all_notifications_read()
    elif kind == "snapshot":
        return {"type": "sync", "changed": [], "state": session.snapshot()}
    else:
        return {"type": "error", "detail": f"Unknown command {kind!r}"}
    return {"type": "ok", "command": kind}


@router.websocket("/ws/sync")
async def sync_socket(websocket: WebSocket, registry: SessionRegistry = Depends(get_ws_registry)):
    # identity is forwarded by the session collaborator as query params
    try:
        actor = resolve_actor(websocket.query_params.get("actor_id"), websocket.query_params.get("role"))
    except HTTPException:
        await websocket.close(code=4401)
        return

    session = await registry.get(actor)
    await manager.connect(actor.id, websocket)
    bus = get_bus()
    subscriber = None
    sub_task = None
    if bus.enabled:
        subscriber = await bus.subscribe(user_channel(actor.id), websocket.send_text)
        sub_task = asyncio.create_task(subscriber.run())

    try:
        await websocket.send_text(json.dumps({"type": "sync", "changed": [], "state": session.snapshot()}, default=str))
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid JSON"}))
                continue
            if not isinstance(msg, dict):
                await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid command payload"}))
                continue
            try:
                reply = await handle_command(session, msg)
            except SyncError as exc:
                reply = {"type": "error", "command": msg.get("type"), "detail": str(exc)}
            await websocket.send_text(json.dumps(reply, default=str))
    except WebSocketDisconnect:
        logger.debug("Sync view of %s disconnected", actor.id)
    finally:
        manager.disconnect(actor.id, websocket)
        if subscriber is not None:
            await subscriber.cancel()
        if sub_task is not None:
            sub_task.cancel()
        if manager.count(actor.id) == 0:
            await registry.close(actor.id)
