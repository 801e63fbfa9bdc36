"""
Message log synchronizer for the active channel.

Keeps one channel's messages in ascending id order while three sources
feed it: the newest page loaded on selection, older pages fetched with an
exclusive id cursor, and live socket events (new, edited, deleted).
Responses that resolve after the channel changed are discarded.
"""

import bisect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, tzinfo
from operator import attrgetter
from typing import Any

from pydantic import ValidationError

from discuss.events import SocketEvent
from discuss.models import Message
from discuss.services.discuss_api import DiscussAPI, DiscussAPIError
from discuss.services.transport import SubscriptionGroup, TransportSession
from discuss.services.viewport import ScrollAnchor, Viewport, should_follow
from discuss.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_message_id = attrgetter("id")


@dataclass
class DayGroup:
    """Messages sharing one local calendar day."""

    day: date
    messages: list[Message] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.day.strftime("%A, %b %d")


def group_by_day(messages: list[Message], tz: tzinfo | None = None) -> list[DayGroup]:
    """Partition an id-ordered log at local day boundaries."""
    groups: list[DayGroup] = []
    for message in messages:
        day = message.created_at.astimezone(tz).date()
        if not groups or groups[-1].day != day:
            groups.append(DayGroup(day))
        groups[-1].messages.append(message)
    return groups


class MessageSynchronizer:
    """Ordered, deduplicated message log of the active channel."""

    def __init__(
        self,
        api: DiscussAPI,
        settings: Settings | None = None,
        measure: Callable[[list[Message]], float] | None = None,
    ):
        self.api = api
        self.settings = settings or get_settings()
        self.page_size = self.settings.page_size
        # Renders the log and returns its content height; supplied by the UI
        self.measure = measure
        self.viewport: Viewport | None = None

        self.channel_id: int | None = None
        self.messages: list[Message] = []
        self._by_id: dict[int, Message] = {}
        self.has_more = True
        self.loading = False
        self.error: str | None = None
        self._generation = 0

    # -------------------------------------------------------------------------
    # Log state
    # -------------------------------------------------------------------------

    @property
    def ids(self) -> list[int]:
        return [m.id for m in self.messages]

    @property
    def oldest_id(self) -> int | None:
        return self.messages[0].id if self.messages else None

    def get(self, message_id: int) -> Message | None:
        return self._by_id.get(message_id)

    def __len__(self) -> int:
        return len(self.messages)

    def groups(self, tz: tzinfo | None = None) -> list[DayGroup]:
        """Date-boundary groups, derived from the log on every call."""
        return group_by_day(self.messages, tz)

    def attach(self, channel_id: int | None) -> int:
        """Point the log at a channel, dropping everything loaded so far.

        Returns the generation token that later loads must still match.
        """
        self._generation += 1
        self.channel_id = channel_id
        self.messages = []
        self._by_id = {}
        self.has_more = True
        self.loading = False
        self.error = None
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    @staticmethod
    def _normalize(page: list[Message]) -> list[Message]:
        """Ascending id order with duplicates removed, whatever the server order."""
        seen: dict[int, Message] = {}
        for message in page:
            seen.setdefault(message.id, message)
        return sorted(seen.values(), key=_message_id)

    def _remeasure(self, follow: bool) -> None:
        if self.viewport is None or self.measure is None:
            return
        self.viewport.scroll_height = self.measure(self.messages)
        if follow:
            self.viewport.scroll_to_bottom()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_initial(self, channel_id: int, generation: int | None = None) -> bool:
        """Load the newest page of ``channel_id``.

        ``generation`` is the token returned by ``attach``; without it the
        log attaches itself to ``channel_id`` first. Returns False when the
        fetch failed or its result went stale. A failure leaves an empty log
        with ``error`` set; it is retried only when the channel is selected
        again.
        """
        if generation is None:
            if channel_id != self.channel_id:
                generation = self.attach(channel_id)
            else:
                generation = self._generation
        elif not self.is_current(generation):
            return False
        self.loading = True
        self.error = None

        try:
            page = await self.api.get_messages(channel_id, limit=self.page_size)
        except DiscussAPIError as e:
            if self.is_current(generation):
                logger.warning(f"Failed to load messages for channel {channel_id}: {e}")
                self.error = str(e)
                self.has_more = False
            return False
        finally:
            if self.is_current(generation):
                self.loading = False

        if not self.is_current(generation):
            logger.debug(f"Discarding stale first page for channel {channel_id}")
            return False

        # Live events may already have landed while the page was in flight
        merged = {m.id: m for m in self._normalize(page)}
        merged.update(self._by_id)
        self.messages = sorted(merged.values(), key=_message_id)
        self._by_id = {m.id: m for m in self.messages}
        self.has_more = len(page) == self.page_size
        self._remeasure(follow=True)
        return True

    async def load_older(self, viewport: Viewport | None = None) -> int:
        """Prepend the page before the oldest loaded message.

        No-op while loading, after the end of history, or on an empty log.
        Returns the number of rows prepended.
        """
        if self.loading or not self.has_more or not self.messages or self.channel_id is None:
            return 0

        viewport = viewport or self.viewport
        channel_id = self.channel_id
        cursor = self.messages[0].id
        generation = self._generation
        self.loading = True

        try:
            page = await self.api.get_messages(channel_id, limit=self.page_size, before=cursor)
        except DiscussAPIError as e:
            if self.is_current(generation):
                logger.warning(f"Failed to load older messages for channel {channel_id}: {e}")
                self.error = str(e)
            return 0
        finally:
            if self.is_current(generation):
                self.loading = False

        if not self.is_current(generation):
            logger.debug(f"Discarding stale older page for channel {channel_id}")
            return 0

        self.error = None
        older = [m for m in self._normalize(page) if m.id < cursor and m.id not in self._by_id]
        if len(page) < self.page_size or not older:
            self.has_more = False
        if not older:
            return 0

        anchor = ScrollAnchor.capture(viewport) if viewport is not None else None
        self.messages[:0] = older
        for message in older:
            self._by_id[message.id] = message
        if anchor is not None and self.measure is not None:
            anchor.restore(viewport, self.measure(self.messages))
        return len(older)

    async def on_scroll(self, scroll_top: float) -> int:
        """Record a scroll position; near the top this pulls older history."""
        if self.viewport is None:
            return 0
        self.viewport.scroll_top = scroll_top
        if not self.viewport.near_top(self.settings.load_more_threshold):
            return 0
        return await self.load_older()

    # -------------------------------------------------------------------------
    # Live events
    # -------------------------------------------------------------------------

    def apply_incoming(self, message: Message) -> bool:
        """Insert a new message unless its id is already in the log."""
        if message.channel_id != self.channel_id or message.id in self._by_id:
            return False
        if self.messages and message.id < self.messages[0].id and self.has_more:
            # Belongs to history not loaded yet; it arrives with that page
            return False

        follow = should_follow(self.viewport, self.settings.auto_scroll_threshold)
        index = bisect.bisect_left(self.messages, message.id, key=_message_id)
        self.messages.insert(index, message)
        self._by_id[message.id] = message
        self._remeasure(follow)
        return True

    def apply_edited(self, message: Message) -> bool:
        """Merge edited content into the loaded row; unknown ids are ignored."""
        row = self._by_id.get(message.id)
        if row is None or row.channel_id != message.channel_id or row.is_deleted:
            return False
        row.content = message.content
        row.is_edited = True
        return True

    def apply_deleted(self, message_id: int) -> bool:
        """Tombstone the loaded row; unknown ids are ignored."""
        row = self._by_id.get(message_id)
        if row is None or row.is_deleted:
            return False
        row.soft_delete()
        return True

    def bind(self, transport: TransportSession) -> SubscriptionGroup:
        """Subscribe the log to live message events."""
        return SubscriptionGroup([
            transport.subscribe(SocketEvent.MESSAGE_NEW, self._on_new),
            transport.subscribe(SocketEvent.MESSAGE_EDITED, self._on_edited),
            transport.subscribe(SocketEvent.MESSAGE_DELETED, self._on_deleted),
        ])

    def _on_new(self, payload: Any) -> None:
        try:
            message = Message.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed message:new payload: {e}")
            return
        self.apply_incoming(message)

    def _on_edited(self, payload: Any) -> None:
        try:
            message = Message.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed message:edited payload: {e}")
            return
        self.apply_edited(message)

    def _on_deleted(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring malformed message:deleted payload: {payload!r}")
            return
        message_id = payload.get("messageId", payload.get("message_id"))
        try:
            self.apply_deleted(int(message_id))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring message:deleted without id: {payload!r}")
