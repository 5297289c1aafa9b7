from typing import Dict, List

from fastapi import WebSocket, WebSocketDisconnect

from jobsync.utils.logger import get_logger


logger = get_logger(__name__)


class ConnectionManager:
    """Open sync views per actor, used for in-process delivery."""

    def __init__(self) -> None:
        self.views: Dict[str, List[WebSocket]] = {}

    async def connect(self, actor_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.views.setdefault(actor_id, []).append(websocket)
        logger.debug("Actor %s has %d open view(s)", actor_id, self.count(actor_id))

    def disconnect(self, actor_id: str, websocket: WebSocket) -> None:
        views = self.views.get(actor_id)
        if not views:
            return
        if websocket in views:
            views.remove(websocket)
        if not views:
            del self.views[actor_id]

    def count(self, actor_id: str) -> int:
        return len(self.views.get(actor_id, []))

    async def send_personal_message(self, receiver_id: str, message: str) -> None:
        for view in list(self.views.get(receiver_id, [])):
            try:
                await view.send_text(message)
            except (RuntimeError, WebSocketDisconnect) as exc:
                logger.debug("Dropping closed view of %s: %s", receiver_id, exc)
                self.disconnect(receiver_id, view)


manager = ConnectionManager()
