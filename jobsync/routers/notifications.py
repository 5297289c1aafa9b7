from fastapi import APIRouter, Depends

from jobsync.services.notification_routes import resolve_route
from jobsync.services.sync_session import SyncSession
from jobsync.utils.dependencies import get_session


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(refresh: bool = False, session: SyncSession = Depends(get_session)):
    if refresh:
        await session.notifications.fetch()
    role = session.actor.role
    return {
        "items": [
            dict(n.model_dump(mode="json"), route=resolve_route(n, role))
            for n in session.notifications.notifications
        ],
        "unread_count": session.notifications.unread_count(),
        "error": session.notifications.error,
    }


@router.post("/{notification_id}/read")
async def mark_notification_read(notification_id: str, session: SyncSession = Depends(get_session)):
    await session.mark_notification_read(notification_id)
    return {"unread_count": session.notifications.unread_count()}


@router.post("/read-all")
async def mark_all_notifications_read(session: SyncSession = Depends(get_session)):
    updated = await session.mark_all_notifications_read()
    return {"updated": updated, "unread_count": session.notifications.unread_count()}
