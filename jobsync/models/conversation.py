from datetime import datetime
from typing import Optional, TypedDict

from jobsync.models.profile import ApplicationDocument, ProfileDocument


class ConversationDocument(TypedDict, total=False):
    _id: str
    employer_id: str
    worker_id: str
    # None is its own match key for find-or-create
    application_id: Optional[str]
    last_message: Optional[str]
    last_message_sender_id: Optional[str]
    # unread by the side that did not send last_message
    unread_count: int
    created_at: datetime
    updated_at: datetime


class ConversationListItem(ConversationDocument, total=False):
    # joined by the list aggregation
    employer: ProfileDocument
    worker: ProfileDocument
    application: ApplicationDocument
