"""Tests for the Discuss REST client."""

import json

import httpx
import pytest

from conftest import make_message, wire
from discuss.services.discuss_api import DiscussAPI, DiscussAPIError


def mock_api(settings, handler, token="token-123"):
    requests = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    api = DiscussAPI(token, settings=settings, transport=httpx.MockTransport(record))
    return api, requests


class TestRequests:
    """Test URL building and headers."""

    @pytest.mark.asyncio
    async def test_newest_page_request(self, settings):
        """Test the first page asks for the page size without a cursor."""
        api, requests = mock_api(settings, lambda r: httpx.Response(200, json=[]))

        await api.get_messages(1)

        request = requests[0]
        assert request.url.path == "/api/discuss/channels/1/messages"
        assert dict(request.url.params) == {"limit": "3"}
        assert request.headers["Authorization"] == "Bearer token-123"

    @pytest.mark.asyncio
    async def test_older_page_sends_cursor(self, settings):
        api, requests = mock_api(settings, lambda r: httpx.Response(200, json=[]))

        await api.get_messages(1, limit=50, before=120)

        assert dict(requests[0].url.params) == {"limit": "50", "before": "120"}

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, settings):
        api, requests = mock_api(settings, lambda r: httpx.Response(200, json=[]), token=None)

        await api.get_my_channels()

        assert "Authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_deals_live_outside_prefix(self, settings):
        """Test deals are read from the CRM endpoint, not the chat prefix."""
        api, requests = mock_api(
            settings,
            lambda r: httpx.Response(200, json=[{"deal_id": 7, "product_name": "Acme Deal"}]),
        )

        deals = await api.get_deals()

        assert requests[0].url.path == "/api/deals/company/all"
        assert deals[0].id == 7
        assert deals[0].name == "Acme Deal"

    @pytest.mark.asyncio
    async def test_create_channel_body(self, settings):
        api, requests = mock_api(
            settings,
            lambda r: httpx.Response(201, json={"channel_id": 4, "name": "project-alpha"}),
        )

        channel = await api.create_channel("project-alpha", "Alpha launch")

        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {
            "name": "project-alpha",
            "description": "Alpha launch",
            "isDefault": False,
        }
        assert channel.id == 4

    @pytest.mark.asyncio
    async def test_search_query_param(self, settings):
        api, requests = mock_api(settings, lambda r: httpx.Response(200, json=[]))

        await api.search_messages("renewal")

        assert requests[0].url.path == "/api/discuss/search"
        assert requests[0].url.params["q"] == "renewal"


class TestParsing:
    """Test response parsing."""

    @pytest.mark.asyncio
    async def test_results_wrapper(self, settings):
        """Test paginated envelopes are unwrapped."""
        rows = [wire(make_message(i)) for i in (4, 5)]
        api, _ = mock_api(settings, lambda r: httpx.Response(200, json={"results": rows}))

        messages = await api.get_messages(1)

        assert [m.id for m in messages] == [4, 5]

    @pytest.mark.asyncio
    async def test_null_text_fields_do_not_fail_page(self, settings):
        """Test rows with null sender name or content still parse."""
        rows = [wire(make_message(i)) for i in (4, 5)]
        rows[0]["content"] = None
        rows[1]["sender_name"] = None
        api, _ = mock_api(settings, lambda r: httpx.Response(200, json=rows))

        messages = await api.get_messages(1)

        assert [m.id for m in messages] == [4, 5]
        assert messages[0].content == ""
        assert messages[0].display_text == ""
        assert messages[1].sender_name == ""

    @pytest.mark.asyncio
    async def test_empty_body(self, settings):
        """Test endpoints answering with no body return None."""
        api, _ = mock_api(settings, lambda r: httpx.Response(204))

        assert await api.mark_channel_read(1) is None

    @pytest.mark.asyncio
    async def test_malformed_payload(self, settings):
        api, _ = mock_api(settings, lambda r: httpx.Response(200, json=[{"name": "no id"}]))

        with pytest.raises(DiscussAPIError):
            await api.get_my_channels()


class TestErrors:
    """Test error mapping."""

    @pytest.mark.asyncio
    async def test_non_json_body(self, settings):
        """Test an HTML gateway page maps to an API error."""
        api, _ = mock_api(settings, lambda r: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(DiscussAPIError) as exc_info:
            await api.get_messages(1)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_status_error_carries_code(self, settings):
        api, _ = mock_api(settings, lambda r: httpx.Response(403, json={"error": "Not a member"}))

        with pytest.raises(DiscussAPIError) as exc_info:
            await api.get_channel(9)

        assert exc_info.value.status_code == 403
        assert "Not a member" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self, settings):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        api, _ = mock_api(settings, refuse)

        with pytest.raises(DiscussAPIError) as exc_info:
            await api.get_my_channels()

        assert exc_info.value.status_code is None
