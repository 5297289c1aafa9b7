from datetime import datetime, timezone
from typing import Annotated, Any

from bson import ObjectId
from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class DocumentModel(BaseModel):
    """Typed view over a stored row; accepts either ``id`` or Mongo's ``_id``."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"), min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _stringify_object_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: str(value) if isinstance(value, ObjectId) else value for key, value in data.items()}
        return data
