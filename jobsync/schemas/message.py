from datetime import datetime
from typing import Optional, Tuple

from jobsync.schemas.base import DocumentModel, UtcDatetime


class Message(DocumentModel):

    conversation_id: str
    sender_id: str
    recipient_id: Optional[str] = None
    content: str
    read: bool = False
    created_at: UtcDatetime

    @property
    def order_key(self) -> Tuple[datetime, str]:
        # created_at alone is not unique; the id breaks ties deterministically
        return (self.created_at, self.id)
