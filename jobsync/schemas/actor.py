from enum import Enum

from pydantic import BaseModel, Field


class ActorRole(str, Enum):

    EMPLOYER = "employer"
    WORKER = "worker"


class Actor(BaseModel):

    id: str = Field(min_length=1)
    role: ActorRole
