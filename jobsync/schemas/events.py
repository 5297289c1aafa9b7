"""Validation of raw change stream payloads.

Events arrive as untrusted ``{table, operation, row}`` dicts and are turned into
typed entities before any store sees them.
"""

from typing import Any, Dict, Literal, Type, Union

from pydantic import BaseModel

from jobsync.schemas.conversation import Conversation
from jobsync.schemas.message import Message
from jobsync.schemas.notification import Notification


Entity = Union[Conversation, Message, Notification]

ENTITY_MODELS: Dict[str, Type[Entity]] = {
    "conversations": Conversation,
    "messages": Message,
    "notifications": Notification,
}


class ChangeEvent(BaseModel):

    table: Literal["conversations", "messages", "notifications"]
    operation: Literal["insert", "update"]
    row: Dict[str, Any]

    def to_entity(self) -> Entity:
        return ENTITY_MODELS[self.table].model_validate(self.row)


def parse_change_event(raw: Any) -> tuple[ChangeEvent, Entity]:
    """Raises ``pydantic.ValidationError`` for malformed payloads."""
    event = ChangeEvent.model_validate(raw)
    return event, event.to_entity()
