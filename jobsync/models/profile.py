from typing import Literal, Optional, TypedDict


ProfileRole = Literal["employer", "worker"]


class ProfileDocument(TypedDict, total=False):
    _id: str
    role: ProfileRole
    full_name: str
    company_name: Optional[str]
    photo_url: Optional[str]


class ApplicationDocument(TypedDict, total=False):
    _id: str
    job_id: str
    worker_id: str
    status: str
