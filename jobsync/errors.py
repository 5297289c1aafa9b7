"""Error taxonomy shared by the stores.

Every collaborator-facing call converts storage failures into one of these.
None of them is fatal; each store keeps the last one as a string.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for store failures."""


class FetchError(SyncError):
    """A read from the storage collaborator failed. Cached data is kept."""


class WriteError(SyncError):
    """A write to the storage collaborator failed."""


class SendError(WriteError):
    """Sending a message failed.

    ``message_id`` is set when the message row was written but the parent
    conversation summary could not be updated.
    """

    def __init__(self, detail: str, message_id: Optional[str] = None) -> None:
        super().__init__(detail)
        self.message_id = message_id


class ValidationError(SyncError, ValueError):
    """Input rejected before any I/O."""


class InvalidMessageError(ValidationError, SendError):
    """Empty message body or no focused conversation."""

    def __init__(self, detail: str) -> None:
        SendError.__init__(self, detail)
