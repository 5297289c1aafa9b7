from fastapi import Depends, Header, HTTPException, Request, WebSocket

from jobsync.schemas.actor import Actor, ActorRole
from jobsync.services.sync_session import SessionRegistry, SyncSession


def resolve_actor(actor_id: str | None, role: str | None) -> Actor:
    """Identity comes from the session collaborator in front of this service."""
    if not actor_id or not role:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    try:
        return Actor(id=actor_id, role=ActorRole(role))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid actor identity")


async def get_current_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    return resolve_actor(x_actor_id, x_actor_role)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_ws_registry(websocket: WebSocket) -> SessionRegistry:
    return websocket.app.state.registry


async def get_session(
    actor: Actor = Depends(get_current_actor),
    registry: SessionRegistry = Depends(get_registry),
) -> SyncSession:
    return await registry.get(actor)
