"""
Discuss client entry point.

Wires one transport session, the REST client, the channel directory, the
message synchronizer and the composer for a logged-in user.
"""

import logging

from discuss.events import SocketEvent
from discuss.models import Deal, Message
from discuss.services.cache import TTLCache
from discuss.services.channel_directory import ChannelDirectory
from discuss.services.composer import Composer
from discuss.services.discuss_api import DiscussAPI, DiscussAPIError
from discuss.services.message_sync import MessageSynchronizer
from discuss.services.transport import SubscriptionGroup, TransportSession
from discuss.settings import Settings, get_settings

logger = logging.getLogger(__name__)

JSON_LOG_FORMAT = '{"time": "%(asctime)s", "logger": "%(name)s", "level": "%(levelname)s", "message": "%(message)s"}'
TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=TEXT_LOG_FORMAT if settings.log_format == "text" else JSON_LOG_FORMAT,
    )


class DiscussClient:
    """Team chat core for one authenticated user."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: TransportSession | None = None,
        api: DiscussAPI | None = None,
        cache: TTLCache | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport or TransportSession(self.settings)
        self.api = api or DiscussAPI(settings=self.settings)
        self.cache = cache if cache is not None else TTLCache(self.settings.deals_cache_ttl_seconds)

        self.synchronizer = MessageSynchronizer(self.api, self.settings)
        self.directory = ChannelDirectory(self.api, self.transport, self.synchronizer)
        self.composer = Composer(self.transport, self.settings)
        self.composer.on_sent = self.synchronizer.apply_incoming

        self.emp_id: int | None = None
        self._subscriptions = SubscriptionGroup()

    async def start(self, token: str, emp_id: int | None = None) -> None:
        """Connect the socket and load channels and deals."""
        logger.info("Starting Discuss client...")
        self.emp_id = emp_id
        self.api.access_token = token
        self._subscriptions.add(self.synchronizer.bind(self.transport))
        self._subscriptions.add(self.directory.bind())
        await self.transport.connect(token)
        await self.load_deals()
        await self.directory.load_channels()
        self._sync_composer()

    async def stop(self) -> None:
        """Release every subscription and close the socket (logout)."""
        logger.info("Stopping Discuss client...")
        self._subscriptions.close()
        self.directory.close()
        self.composer.cancel_edit()
        await self.transport.disconnect()
        self.api.access_token = None
        self.cache.invalidate()

    async def load_deals(self) -> list[Deal]:
        """Deals for ``#`` mentions; an unavailable endpoint just means no deals."""
        try:
            deals = await self.cache.get_or_load("deals", self.api.get_deals)
        except DiscussAPIError as e:
            logger.info(f"Deal list unavailable for mentions: {e}")
            deals = []
        self.composer.deals = deals
        return deals

    def _sync_composer(self) -> None:
        self.composer.channel_id = self.directory.active_channel_id
        self.composer.members = self.directory.members

    async def select_channel(self, channel_id: int) -> bool:
        self.composer.cancel_edit()
        loaded = await self.directory.select_channel(channel_id)
        self._sync_composer()
        return loaded

    async def send(self, text: str) -> Message | None:
        """Send ``text`` through the composer (or apply the pending edit)."""
        self.composer.set_text(text)
        return await self.composer.submit()

    def edit_message(self, message: Message) -> bool:
        """Enter edit mode for one of the viewer's own messages."""
        if not self.is_own(message):
            return False
        self.composer.begin_edit(message)
        return True

    def delete_message(self, message: Message) -> bool:
        """Request deletion; the log is updated when the server broadcasts it."""
        if message.is_deleted:
            return False
        return self.transport.emit(SocketEvent.MESSAGE_DELETE, {"messageId": message.id})

    def is_own(self, message: Message) -> bool:
        return self.emp_id is not None and message.sender_emp_id == self.emp_id

    def typing_names(self) -> list[str]:
        return self.directory.typing_names(self.emp_id)
