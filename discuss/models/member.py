"""
Channel member and deal models used for mention autocomplete.
"""

from pydantic import BaseModel, ConfigDict, Field


class ChannelMember(BaseModel):
    """An employee belonging to a channel."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    emp_id: int
    name: str
    email: str | None = None
    role: str | None = None
    department: str | None = None

    @property
    def initial(self) -> str:
        return (self.name or "U")[0].upper()


class Deal(BaseModel):
    """A CRM deal that can be referenced with ``#`` in a message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(alias="deal_id")
    name: str = Field(default="", alias="product_name")
