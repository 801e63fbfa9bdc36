"""
Channel model for chat channels.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Channel(BaseModel):
    """A persistent named chat topic the viewer can see."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(alias="channel_id")
    name: str
    description: str | None = None
    unread_count: int = 0  # per-viewer, server-computed, reset locally on select
    is_member: bool = True
    is_default: bool = False
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"#{self.name}"

    @property
    def badge(self) -> str:
        """Unread badge text for the channel list."""
        if self.unread_count <= 0:
            return ""
        if self.unread_count > 99:
            return "99+"
        return str(self.unread_count)

    def __repr__(self) -> str:
        return f"<Channel #{self.name}>"
