"""
Discuss REST API client.

Wraps the channel, member and message endpoints of the CRM backend:
- /discuss/channels - channel list, browse, create, detail
- /discuss/channels/{id}/members - member list
- /discuss/channels/{id}/messages - cursor-paginated history
- /discuss/messages/{id}/thread - thread replies
- /discuss/mentions, /discuss/search
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from discuss.models import Channel, ChannelMember, Deal, Message
from discuss.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class DiscussAPIError(Exception):
    """Exception raised for Discuss REST API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DiscussAPI:
    """Client for the Discuss REST API."""

    def __init__(
        self,
        access_token: str | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.access_token = access_token
        self.base_url = self.settings.api_url
        self._transport = transport

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json: dict | None = None,
        prefixed: bool = True,
    ) -> Any:
        """Make an authenticated request to the API."""
        prefix = self.settings.api_prefix if prefixed else ""
        url = f"{self.base_url}{prefix}{endpoint}"

        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self.headers,
                    params=params,
                    json=json,
                    timeout=self.settings.request_timeout,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise DiscussAPIError(
                    f"Discuss API error {e.response.status_code}: {e.response.text}",
                    status_code=e.response.status_code,
                )
            except httpx.RequestError as e:
                raise DiscussAPIError(f"Discuss API request failed: {e}")

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DiscussAPIError(
                f"Discuss API returned a non-JSON body: {e}",
                status_code=response.status_code,
            )

    @staticmethod
    def _parse_list(model: type, data: Any) -> list:
        """Parse a list payload, accepting bare lists or ``{"results": [...]}``."""
        items = data.get("results", []) if isinstance(data, dict) else data or []
        try:
            return [model.model_validate(item) for item in items]
        except ValidationError as e:
            raise DiscussAPIError(f"Malformed {model.__name__} payload: {e}")

    @staticmethod
    def _parse_one(model: type, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DiscussAPIError(f"Malformed {model.__name__} payload: {e}")

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    async def get_my_channels(self) -> list[Channel]:
        """Channels the viewer belongs to, with unread counts, in server order."""
        data = await self._request("GET", "/channels")
        return self._parse_list(Channel, data)

    async def browse_channels(self) -> list[Channel]:
        """Public channels the viewer can join."""
        data = await self._request("GET", "/channels/browse")
        return self._parse_list(Channel, data)

    async def create_channel(self, name: str, description: str = "", is_default: bool = False) -> Channel:
        data = await self._request(
            "POST",
            "/channels",
            json={"name": name, "description": description, "isDefault": is_default},
        )
        return self._parse_one(Channel, data)

    async def get_channel(self, channel_id: int) -> Channel:
        data = await self._request("GET", f"/channels/{channel_id}")
        return self._parse_one(Channel, data)

    async def update_channel(self, channel_id: int, updates: dict) -> Channel:
        data = await self._request("PATCH", f"/channels/{channel_id}", json=updates)
        return self._parse_one(Channel, data)

    # -------------------------------------------------------------------------
    # Members
    # -------------------------------------------------------------------------

    async def join_channel(self, channel_id: int) -> Any:
        return await self._request("POST", f"/channels/{channel_id}/join")

    async def leave_channel(self, channel_id: int) -> Any:
        return await self._request("POST", f"/channels/{channel_id}/leave")

    async def get_channel_members(self, channel_id: int) -> list[ChannelMember]:
        data = await self._request("GET", f"/channels/{channel_id}/members")
        return self._parse_list(ChannelMember, data)

    async def mark_channel_read(self, channel_id: int) -> Any:
        return await self._request("POST", f"/channels/{channel_id}/read")

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def get_messages(
        self,
        channel_id: int,
        limit: int | None = None,
        before: int | None = None,
    ) -> list[Message]:
        """
        Get one page of channel history.

        ``before`` is an exclusive message-id cursor; omit it for the newest page.
        """
        params: dict[str, Any] = {"limit": limit or self.settings.page_size}
        if before is not None:
            params["before"] = before
        data = await self._request("GET", f"/channels/{channel_id}/messages", params=params)
        return self._parse_list(Message, data)

    async def get_thread(self, message_id: int) -> list[Message]:
        data = await self._request("GET", f"/messages/{message_id}/thread")
        return self._parse_list(Message, data)

    async def get_my_mentions(self) -> list[Message]:
        data = await self._request("GET", "/mentions")
        return self._parse_list(Message, data)

    async def search_messages(self, query: str) -> list[Message]:
        data = await self._request("GET", "/search", params={"q": query})
        return self._parse_list(Message, data)

    # -------------------------------------------------------------------------
    # Deals (mention targets)
    # -------------------------------------------------------------------------

    async def get_deals(self) -> list[Deal]:
        """Company deals for ``#`` mentions."""
        data = await self._request("GET", self.settings.deals_endpoint, prefixed=False)
        return self._parse_list(Deal, data)
