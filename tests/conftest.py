"""Shared fakes for the Discuss client tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import socketio

from discuss.models import Channel, ChannelMember, Deal, Message
from discuss.services.discuss_api import DiscussAPIError
from discuss.services.transport import TransportSession
from discuss.settings import Settings

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_message(message_id: int, channel_id: int = 1, content: str = "hello", **extra) -> Message:
    extra.setdefault("created_at", BASE_TIME + timedelta(minutes=message_id))
    extra.setdefault("sender_emp_id", 5)
    extra.setdefault("sender_name", "Bob")
    return Message(id=message_id, channel_id=channel_id, content=content, **extra)


def wire(message: Message) -> dict:
    """Socket payload shape of a message."""
    return message.model_dump(mode="json", by_alias=True)


class FakeSocketClient:
    """Stands in for socketio.AsyncClient."""

    def __init__(self, fail_times: int = 0):
        self.handlers = {}
        self.connected = False
        self.fail_times = fail_times
        self.connect_calls = []
        self.emitted = []
        self.ack_response = None
        self.call_error = None
        self.disconnect_calls = 0

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise socketio.exceptions.ConnectionError("Connection refused")
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        was_connected = self.connected
        self.connected = False
        if was_connected:
            await self.handlers["disconnect"]("client disconnect")

    async def emit(self, event, data=None, callback=None):
        self.emitted.append((event, data))

    async def call(self, event, data=None, timeout=None):
        self.emitted.append((event, data))
        if self.call_error is not None:
            raise self.call_error
        if callable(self.ack_response):
            return self.ack_response(event, data)
        return self.ack_response

    async def deliver(self, event, payload):
        """Simulate an inbound server event."""
        await self.handlers["*"](event, payload)

    async def drop(self):
        """Simulate a transport-level disconnect."""
        self.connected = False
        await self.handlers["disconnect"]("transport close")

    def events(self, name=None):
        return [e for e in self.emitted if name is None or e[0] == name]


class FakeDiscussAPI:
    """In-memory stand-in for DiscussAPI."""

    def __init__(self, channels=None, messages=None, members=None):
        self.channels = {c.id: c for c in (channels or [])}
        self.messages = {cid: sorted(msgs, key=lambda m: m.id) for cid, msgs in (messages or {}).items()}
        self.members = members or {}
        self.deals = [Deal(id=7, name="Acme Deal"), Deal(id=8, name="Globex Renewal")]
        self.access_token = None
        self.calls = []
        self.failing = set()
        self.gates = {}  # channel_id -> asyncio.Event holding get_messages
        self.message_page_override = None

    def _check(self, name):
        self.calls.append(name)
        if name in self.failing:
            raise DiscussAPIError(f"{name} failed", status_code=500)

    async def get_my_channels(self):
        self._check("get_my_channels")
        return [c.model_copy() for c in self.channels.values() if c.is_member]

    async def browse_channels(self):
        self._check("browse_channels")
        return [c.model_copy() for c in self.channels.values()]

    async def create_channel(self, name, description="", is_default=False):
        self._check("create_channel")
        channel = Channel(id=max(self.channels, default=0) + 1, name=name, description=description)
        self.channels[channel.id] = channel
        return channel.model_copy()

    async def get_channel(self, channel_id):
        self._check("get_channel")
        if channel_id not in self.channels:
            raise DiscussAPIError("Channel not found", status_code=404)
        return self.channels[channel_id].model_copy()

    async def join_channel(self, channel_id):
        self._check("join_channel")
        self.channels[channel_id].is_member = True

    async def leave_channel(self, channel_id):
        self._check("leave_channel")
        self.channels[channel_id].is_member = False

    async def get_channel_members(self, channel_id):
        self._check("get_channel_members")
        return list(self.members.get(channel_id, []))

    async def mark_channel_read(self, channel_id):
        self._check("mark_channel_read")
        return {"ok": True}

    async def get_messages(self, channel_id, limit=None, before=None):
        self._check("get_messages")
        gate = self.gates.get(channel_id)
        if gate is not None:
            await gate.wait()
        if self.message_page_override is not None:
            return self.message_page_override(channel_id, limit, before)
        rows = [m for m in self.messages.get(channel_id, []) if before is None or m.id < before]
        page = rows[-limit:] if limit else rows
        return [m.model_copy() for m in page]

    async def get_deals(self):
        self._check("get_deals")
        return list(self.deals)


@pytest.fixture
def settings():
    return Settings(
        api_url="http://crm.test/api",
        page_size=3,
        reconnection_attempts=4,
        reconnection_delay=1.0,
        reconnection_delay_max=3.0,
        typing_throttle_seconds=2.0,
    )


@pytest.fixture
def socket_client():
    return FakeSocketClient()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def transport(settings, socket_client, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return TransportSession(settings, client_factory=lambda: socket_client, sleep=fake_sleep)


@pytest.fixture
def members():
    return [
        ChannelMember(emp_id=5, name="Bob", email="bob@crm.test", role="Sales"),
        ChannelMember(emp_id=42, name="Jane Doe", email="jane@crm.test", department="Ops"),
        ChannelMember(emp_id=9, name="Carla Reyes", email="creyes@crm.test"),
    ]


@pytest.fixture
def api(members):
    channels = [
        Channel(id=1, name="general", unread_count=2),
        Channel(id=2, name="sales", unread_count=0),
        Channel(id=3, name="support", unread_count=5),
    ]
    messages = {
        1: [make_message(i, channel_id=1, content=f"general {i}") for i in range(1, 8)],
        2: [make_message(i, channel_id=2, content=f"sales {i}") for i in range(100, 102)],
        3: [],
    }
    return FakeDiscussAPI(channels, messages, {1: members, 2: members[:1]})


async def connect(transport, token="token-123"):
    await transport.connect(token)
    assert await transport.wait_connected(timeout=1)


async def settle():
    """Let scheduled emit tasks run."""
    for _ in range(3):
        await asyncio.sleep(0)
