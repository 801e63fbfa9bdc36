"""
Channel directory: joined channels, unread counters and active selection.
"""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from discuss.events import ConnectionState, SocketEvent
from discuss.models import Channel, ChannelMember, Message
from discuss.services.discuss_api import DiscussAPI, DiscussAPIError
from discuss.services.message_sync import MessageSynchronizer
from discuss.services.transport import SubscriptionGroup, TransportSession
from discuss.services.typing import TypingIndicatorSet

logger = logging.getLogger(__name__)

MAX_TYPING_NAMES = 3


class ChannelDirectory:
    """Track the viewer's channels and drive the synchronizer's selection."""

    def __init__(
        self,
        api: DiscussAPI,
        transport: TransportSession,
        synchronizer: MessageSynchronizer,
        typing: TypingIndicatorSet | None = None,
    ):
        self.api = api
        self.transport = transport
        self.synchronizer = synchronizer
        if typing is None:
            typing = TypingIndicatorSet(transport.settings.typing_timeout_seconds)
        self.typing = typing

        self.channels: list[Channel] = []
        self.active_channel_id: int | None = None
        self.active_channel: Channel | None = None
        self.members: list[ChannelMember] = []
        self.loading = False
        self.error: str | None = None

        self._selection = 0
        self._background: set[asyncio.Task] = set()
        self._subscriptions = SubscriptionGroup()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, channel_id: int) -> Channel | None:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self.channels)

    def member_name(self, emp_id: int) -> str | None:
        for member in self.members:
            if member.emp_id == emp_id:
                return member.name
        return None

    def typing_names(self, self_emp_id: int | None = None) -> list[str]:
        """Names of up to three other members typing in the active channel."""
        exclude = [self_emp_id] if self_emp_id is not None else []
        names = [self.member_name(emp_id) or "Someone" for emp_id in self.typing.active(exclude)]
        return names[:MAX_TYPING_NAMES]

    # -------------------------------------------------------------------------
    # Loading and selection
    # -------------------------------------------------------------------------

    async def load_channels(self) -> list[Channel]:
        """Fetch joined channels; auto-select the first if nothing is active."""
        try:
            channels = await self.api.get_my_channels()
        except DiscussAPIError as e:
            logger.warning(f"Failed to load channels: {e}")
            self.error = str(e)
            return self.channels

        self.error = None
        self.channels = channels
        if self.active_channel_id is not None:
            # Local reset wins over a count computed before the read landed
            active = self.get(self.active_channel_id)
            if active is not None:
                active.unread_count = 0
        elif channels:
            await self.select_channel(channels[0].id)
        return self.channels

    async def select_channel(self, channel_id: int) -> bool:
        """Switch the active channel.

        Leaves the previous room, clears the log, loads detail, first page
        and members concurrently, then joins the new room and marks it read.
        Returns False if loading failed or was superseded by another switch.
        """
        previous = self.active_channel_id
        if previous is not None and previous != channel_id:
            self.transport.emit(SocketEvent.CHANNEL_LEAVE, previous)

        self._selection += 1
        selection = self._selection
        channel = self.get(channel_id)
        self.active_channel_id = channel_id
        self.active_channel = channel
        self.members = []
        self.typing.clear()
        self.error = None
        self.loading = True
        if channel is not None:
            channel.unread_count = 0
        generation = self.synchronizer.attach(channel_id)

        detail, loaded, members = await asyncio.gather(
            self.api.get_channel(channel_id),
            self.synchronizer.load_initial(channel_id, generation),
            self.api.get_channel_members(channel_id),
            return_exceptions=True,
        )

        if selection != self._selection:
            logger.debug(f"Discarding stale selection of channel {channel_id}")
            return False
        self.loading = False

        failures = [r for r in (detail, loaded, members) if isinstance(r, BaseException)]
        if failures or not loaded:
            reason = failures[0] if failures else self.synchronizer.error
            logger.warning(f"Failed to load channel {channel_id}: {reason}")
            self.error = str(reason)
            return False

        self.active_channel = detail
        self.members = members
        self.transport.emit(SocketEvent.CHANNEL_JOIN, channel_id)
        self._spawn(self._mark_read(channel_id))
        return True

    async def _mark_read(self, channel_id: int) -> None:
        try:
            await self.api.mark_channel_read(channel_id)
        except DiscussAPIError as e:
            logger.debug(f"Mark-read for channel {channel_id} failed: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for fire-and-forget calls started by this directory."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Channel management
    # -------------------------------------------------------------------------

    async def create_channel(self, name: str, description: str = "") -> Channel:
        """Create a channel and refresh the list."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Channel name is required")
        channel = await self.api.create_channel(name, (description or "").strip())
        await self.load_channels()
        return channel

    async def browse_channels(self) -> list[Channel]:
        return await self.api.browse_channels()

    async def join_channel(self, channel_id: int) -> None:
        await self.api.join_channel(channel_id)
        await self.load_channels()

    async def leave_channel(self, channel_id: int) -> None:
        """Leave a channel; if it was active, fall back to the first remaining one."""
        await self.api.leave_channel(channel_id)
        if self.active_channel_id == channel_id:
            self.transport.emit(SocketEvent.CHANNEL_LEAVE, channel_id)
            self.active_channel_id = None
            self.active_channel = None
            self.members = []
            self.synchronizer.attach(None)
        await self.load_channels()

    # -------------------------------------------------------------------------
    # Live events
    # -------------------------------------------------------------------------

    def bind(self) -> SubscriptionGroup:
        """Subscribe to unread, typing and reconnect signals."""
        self._subscriptions.add(self.transport.subscribe(SocketEvent.MESSAGE_NEW, self._on_new_message))
        self._subscriptions.add(self.transport.subscribe(SocketEvent.TYPING_START, self._on_typing_start))
        self._subscriptions.add(self.transport.subscribe(SocketEvent.TYPING_STOP, self._on_typing_stop))
        self._subscriptions.add(self.transport.watch_state(self._on_state))
        return self._subscriptions

    def close(self) -> None:
        self._subscriptions.close()
        for task in list(self._background):
            task.cancel()

    def note_incoming(self, channel_id: int) -> None:
        """Count one new message toward a channel that is not being viewed."""
        if channel_id == self.active_channel_id:
            return
        channel = self.get(channel_id)
        if channel is not None:
            channel.unread_count += 1

    def _on_new_message(self, payload: Any) -> None:
        try:
            message = Message.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed message:new payload: {e}")
            return
        self.note_incoming(message.channel_id)
        if message.sender_emp_id is not None and message.channel_id == self.active_channel_id:
            self.typing.stop(message.sender_emp_id)

    def _typing_emp_id(self, payload: Any) -> int | None:
        if not isinstance(payload, dict):
            return None
        channel_id = payload.get("channelId")
        if channel_id is not None and channel_id != self.active_channel_id:
            return None
        emp_id = payload.get("empId")
        return emp_id if isinstance(emp_id, int) else None

    def _on_typing_start(self, payload: Any) -> None:
        emp_id = self._typing_emp_id(payload)
        if emp_id is not None:
            self.typing.start(emp_id)

    def _on_typing_stop(self, payload: Any) -> None:
        emp_id = self._typing_emp_id(payload)
        if emp_id is not None:
            self.typing.stop(emp_id)

    def _on_state(self, state: ConnectionState) -> None:
        # Rooms do not survive a reconnect
        if state == ConnectionState.CONNECTED and self.active_channel_id is not None:
            self.transport.emit(SocketEvent.CHANNEL_JOIN, self.active_channel_id)
