from typing import Optional

from pydantic import Field

from jobsync.schemas.base import DocumentModel, UtcDatetime


class ParticipantSummary(DocumentModel):

    full_name: Optional[str] = None
    company_name: Optional[str] = None
    photo_url: Optional[str] = None


class ApplicationSummary(DocumentModel):

    job_id: Optional[str] = None
    status: Optional[str] = None
    job_title: Optional[str] = None


class Conversation(DocumentModel):

    employer_id: str
    worker_id: str
    application_id: Optional[str] = None
    last_message: Optional[str] = None
    last_message_sender_id: Optional[str] = None
    unread_count: int = Field(default=0, ge=0)
    created_at: Optional[UtcDatetime] = None
    updated_at: UtcDatetime
    # joined display fields, absent on change stream rows
    employer: Optional[ParticipantSummary] = None
    worker: Optional[ParticipantSummary] = None
    application: Optional[ApplicationSummary] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.employer_id, self.worker_id)

    def counterpart_id(self, user_id: str) -> Optional[str]:
        if user_id == self.employer_id:
            return self.worker_id
        if user_id == self.worker_id:
            return self.employer_id
        return None

    @property
    def is_enriched(self) -> bool:
        return self.employer is not None or self.worker is not None or self.application is not None
