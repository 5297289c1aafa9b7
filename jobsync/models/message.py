from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    # counterpart at send time, lets change streams filter per actor
    recipient_id: str
    content: str
    read: bool
    created_at: datetime
