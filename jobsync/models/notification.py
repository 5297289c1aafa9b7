from datetime import datetime
from typing import Any, Dict, Literal, Optional, TypedDict


NotificationKind = Literal["message", "application", "job_match", "system"]


class NotificationDocument(TypedDict, total=False):
    _id: str
    user_id: str
    type: NotificationKind
    title: str
    body: str
    related_id: Optional[str]
    data: Dict[str, Any]
    read: bool
    created_at: datetime
