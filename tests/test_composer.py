"""Tests for the message composer."""

import pytest

from conftest import connect, make_message, settle, wire
from discuss.models import Deal
from discuss.services.composer import ComposeError, Composer, KeyAction


@pytest.fixture
def clock():
    return [0.0]


@pytest.fixture
def composer(transport, settings, members, clock):
    composer = Composer(transport, settings, clock=lambda: clock[0])
    composer.channel_id = 1
    composer.members = members
    composer.deals = [Deal(id=7, name="Acme Deal"), Deal(id=8, name="Globex Renewal")]
    return composer


def echo_ack(event, data):
    return wire(make_message(50, channel_id=data["channelId"], content=data["content"]))


class TestAutocomplete:
    """Test mention autocomplete in the composer."""

    def test_employee_selection_inserts_token(self, composer):
        """Test selecting a member replaces the trigger span with the token."""
        composer.set_text("Hi @ja")
        candidates = composer.candidates()

        composer.select(candidates[0])

        assert [c.name for c in candidates] == ["Jane Doe"]
        assert composer.text == "Hi @[Jane Doe](emp:42) "
        assert composer.caret == len(composer.text)
        assert composer.popup_open is False
        assert composer.wants_focus is True

    def test_selection_mid_text_keeps_tail(self, composer):
        """Test the text after the caret survives selection."""
        composer.set_text("Hi @ja and more", caret=6)

        composer.select(composer.candidates()[0])

        assert composer.text == "Hi @[Jane Doe](emp:42)  and more"
        assert composer.caret == 23

    def test_deal_selection(self, composer):
        """Test # offers deals and inserts a deal token."""
        composer.set_text("see #glob")

        composer.select(composer.candidates()[0])

        assert composer.text == "see #[Globex Renewal](deal:8) "

    def test_select_without_trigger_is_noop(self, composer):
        """Test a stale selection does nothing once the popup closed."""
        composer.set_text("Hi @ja")
        candidate = composer.candidates()[0]
        composer.close_popup()

        composer.select(candidate)

        assert composer.text == "Hi @ja"


class TestKeys:
    """Test keyboard handling."""

    @pytest.mark.asyncio
    async def test_modifier_enter_inserts_newline(self, composer):
        """Test Shift+Enter adds a line break instead of sending."""
        composer.set_text("line one")

        result = await composer.handle_key("Enter", modifier=True)

        assert result == KeyAction.NEWLINE
        assert composer.text == "line one\n"

    @pytest.mark.asyncio
    async def test_enter_submits(self, composer, transport, socket_client):
        """Test Enter sends the message."""
        socket_client.ack_response = echo_ack
        await connect(transport)
        composer.set_text("hello")

        result = await composer.handle_key("Enter")

        assert result == KeyAction.SUBMIT
        assert ("message:send", {"channelId": 1, "content": "hello"}) in socket_client.emitted
        assert composer.text == ""

    @pytest.mark.asyncio
    async def test_escape_closes_popup_then_cancels_edit(self, composer):
        """Test Escape closes autocomplete first, then leaves edit mode."""
        composer.begin_edit(make_message(3, content="old text"))
        composer.set_text("old text @b")

        assert await composer.handle_key("Escape") == KeyAction.CLOSE_POPUP
        assert composer.editing is not None

        assert await composer.handle_key("Escape") == KeyAction.CANCEL_EDIT
        assert composer.editing is None
        assert composer.text == ""

        assert await composer.handle_key("Escape") == KeyAction.NONE


class TestSubmit:
    """Test sending and editing."""

    @pytest.mark.asyncio
    async def test_empty_content_is_refused(self, composer, transport, socket_client):
        """Test whitespace-only text never reaches the network."""
        await connect(transport)
        composer.set_text("   \n ")

        result = await composer.submit()
        await settle()

        assert result is None
        assert socket_client.events("message:send") == []

    @pytest.mark.asyncio
    async def test_send_trims_and_reports_message(self, composer, transport, socket_client):
        """Test content is trimmed and the acknowledged message is handed on."""
        socket_client.ack_response = echo_ack
        await connect(transport)
        sent = []
        composer.on_sent = sent.append
        composer.set_text("  Hello @[Bob](emp:5)  ")

        message = await composer.submit()

        assert message.id == 50
        assert message.content == "Hello @[Bob](emp:5)"
        assert sent == [message]
        assert composer.text == ""

    @pytest.mark.asyncio
    async def test_rejected_send_keeps_text(self, composer, transport, socket_client):
        """Test an ack error raises and leaves the typed text in place."""
        socket_client.ack_response = {"error": "Not a member"}
        await connect(transport)
        composer.set_text("keep me")

        with pytest.raises(ComposeError):
            await composer.submit()

        assert composer.text == "keep me"
        assert composer.error == "Not a member"

    @pytest.mark.asyncio
    async def test_send_while_disconnected_keeps_text(self, composer):
        """Test a send without a connection fails loudly and keeps the text."""
        composer.set_text("offline draft")

        with pytest.raises(ComposeError):
            await composer.submit()

        assert composer.text == "offline draft"

    @pytest.mark.asyncio
    async def test_edit_mode_emits_edit(self, composer, transport, socket_client):
        """Test submitting in edit mode issues an edit and exits edit mode."""
        await connect(transport)
        composer.begin_edit(make_message(3, content="Hello @[Bob](emp:5)"))
        assert composer.text == "Hello @[Bob](emp:5)"

        composer.set_text("Hello @[Bob](emp:5), ping")
        await composer.submit()
        await settle()

        assert socket_client.events("message:edit") == [
            ("message:edit", {"messageId": 3, "content": "Hello @[Bob](emp:5), ping"}),
        ]
        assert socket_client.events("message:send") == []
        assert composer.editing is None
        assert composer.text == ""

    @pytest.mark.asyncio
    async def test_edit_while_disconnected_keeps_state(self, composer):
        """Test a dropped edit stays in edit mode with the text intact."""
        composer.begin_edit(make_message(3, content="draft"))

        with pytest.raises(ComposeError):
            await composer.submit()

        assert composer.editing is not None
        assert composer.text == "draft"

    def test_cannot_edit_deleted_message(self, composer):
        """Test tombstones cannot be edited."""
        composer.begin_edit(make_message(3, is_deleted=True))

        assert composer.editing is None


class TestTypingSignals:
    """Test outbound typing signals."""

    @pytest.mark.asyncio
    async def test_typing_is_throttled_and_stopped(self, composer, transport, socket_client, clock):
        """Test typing:start is throttled and typing:stop follows clearing."""
        await connect(transport)

        composer.set_text("h")
        clock[0] = 1.0
        composer.set_text("he")
        clock[0] = 2.5
        composer.set_text("hel")
        composer.clear()
        await settle()

        assert socket_client.emitted == [
            ("typing:start", {"channelId": 1}),
            ("typing:start", {"channelId": 1}),
            ("typing:stop", {"channelId": 1}),
        ]
