from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field

from jobsync.schemas.base import DocumentModel, UtcDatetime


class NotificationType(str, Enum):

    MESSAGE = "message"
    APPLICATION = "application"
    JOB_MATCH = "job_match"
    SYSTEM = "system"


class Notification(DocumentModel):

    user_id: str
    type: NotificationType = NotificationType.SYSTEM
    title: str = ""
    body: str = Field(default="", validation_alias=AliasChoices("body", "message"))
    related_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: UtcDatetime
