"""
Message model for chat messages.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

DELETED_PLACEHOLDER = "This message was deleted"


class Message(BaseModel):
    """A message in one channel's ordered log.

    Ids are monotonically increasing within a channel and agree with
    ``created_at`` order. A deleted message stays in the log as a tombstone.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(alias="message_id")
    channel_id: int
    sender_emp_id: int | None = None
    sender_name: str = ""

    # Raw content; mention tokens stay encoded
    content: str = ""
    created_at: datetime

    # Edit/delete tracking
    is_edited: bool = False
    is_deleted: bool = False

    # Threading
    parent_message_id: int | None = None

    @field_validator("sender_name", "content", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return "" if v is None else v

    @property
    def display_text(self) -> str:
        """Plain display text with mention tokens rendered."""
        if self.is_deleted:
            return DELETED_PLACEHOLDER
        from discuss.services.mentions import render_plain

        return render_plain(self.content)

    def soft_delete(self) -> None:
        """Tombstone the message in place."""
        self.is_deleted = True
        self.content = ""

    def __repr__(self) -> str:
        return f"<Message {self.id} in channel {self.channel_id}>"
