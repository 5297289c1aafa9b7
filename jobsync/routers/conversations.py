from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from jobsync.services.sync_session import SyncSession
from jobsync.utils.dependencies import get_session


router = APIRouter(prefix="/conversations", tags=["chat"])


class StartConversationBody(BaseModel):

    employer_id: str
    worker_id: str
    application_id: Optional[str] = None


class FocusBody(BaseModel):

    conversation_id: Optional[str] = None


class SendBody(BaseModel):

    content: str = Field(max_length=5000)


@router.get("")
async def list_conversations(refresh: bool = False, session: SyncSession = Depends(get_session)):
    if refresh:
        await session.conversations.refresh()
    return {
        "items": [c.model_dump(mode="json") for c in session.conversations.conversations],
        "unread_count": session.conversations.unread_count(),
        "current_conversation_id": session.current_conversation_id,
        "error": session.conversations.error,
    }


@router.post("", status_code=201)
async def start_conversation(body: StartConversationBody, session: SyncSession = Depends(get_session)):
    conversation_id = await session.start_conversation(body.employer_id, body.worker_id, body.application_id)
    return {"conversation_id": conversation_id}


@router.post("/focus")
async def focus_conversation(body: FocusBody, session: SyncSession = Depends(get_session)):
    await session.focus(body.conversation_id)
    return {"current_conversation_id": session.current_conversation_id}


@router.get("/focus/messages")
async def list_messages(session: SyncSession = Depends(get_session)):
    return {
        "conversation_id": session.messages.conversation_id,
        "items": [m.model_dump(mode="json") for m in session.messages.messages],
        "error": session.messages.error,
    }


@router.post("/focus/messages", status_code=201)
async def send_message(body: SendBody, session: SyncSession = Depends(get_session)):
    message = await session.send(body.content)
    return {"message": message.model_dump(mode="json")}


@router.post("/{conversation_id}/read")
async def mark_conversation_read(conversation_id: str, session: SyncSession = Depends(get_session)):
    updated = await session.mark_conversation_read(conversation_id)
    conversation = session.conversations.get(conversation_id)
    return {
        "updated": updated,
        "unread_count": conversation.unread_count if conversation else 0,
    }
