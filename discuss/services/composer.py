"""
Message composer with mention autocomplete and edit mode.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import ValidationError

from discuss.events import SocketEvent
from discuss.models import ChannelMember, Deal, Message
from discuss.services.mentions import (
    Candidate,
    MentionQuery,
    detect_trigger,
    encode_candidate,
    filter_candidates,
)
from discuss.services.transport import TransportError, TransportSession
from discuss.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ComposeError(Exception):
    """A send or edit was not accepted; the composer keeps its text."""
    pass


class KeyAction(str, Enum):
    """What a key press did."""
    SUBMIT = "submit"
    NEWLINE = "newline"
    CLOSE_POPUP = "close_popup"
    CANCEL_EDIT = "cancel_edit"
    NONE = "none"


class Composer:
    """Free text plus caret, turned into send or edit requests."""

    def __init__(
        self,
        transport: TransportSession,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.settings = settings or get_settings()
        self._clock = clock

        self.channel_id: int | None = None
        self.members: list[ChannelMember] = []
        self.deals: list[Deal] = []

        self.text = ""
        self.caret = 0
        self.mention: MentionQuery | None = None
        self.editing: Message | None = None
        self.wants_focus = False
        self.sending = False
        self.error: str | None = None
        self.on_sent: Callable[[Message], object] | None = None
        self._typing_sent_at: float | None = None

    # -------------------------------------------------------------------------
    # Text and autocomplete
    # -------------------------------------------------------------------------

    def set_text(self, text: str, caret: int | None = None) -> None:
        """Replace the text and re-run trigger detection at the caret."""
        self.text = text
        self.caret = len(text) if caret is None else max(0, min(caret, len(text)))
        self.mention = detect_trigger(self.text, self.caret)
        if self.text.strip():
            self._notify_typing()
        else:
            self._stop_typing()

    @property
    def popup_open(self) -> bool:
        return self.mention is not None

    def candidates(self) -> list[Candidate]:
        return filter_candidates(
            self.mention,
            self.members,
            self.deals,
            limit=self.settings.mention_candidate_limit,
        )

    def select(self, candidate: Candidate) -> None:
        """Replace the trigger span with the encoded token and close the popup."""
        if self.mention is None:
            return
        before = self.text[:self.mention.start]
        after = self.text[self.caret:]
        insertion = f"{encode_candidate(candidate)} "
        self.text = before + insertion + after
        self.caret = len(before) + len(insertion)
        self.mention = None
        self.wants_focus = True

    def close_popup(self) -> None:
        self.mention = None

    def insert_newline(self) -> None:
        self.text = f"{self.text[:self.caret]}\n{self.text[self.caret:]}"
        self.caret += 1
        self.mention = None

    def clear(self) -> None:
        self.text = ""
        self.caret = 0
        self.mention = None
        self.error = None
        self._stop_typing()

    # -------------------------------------------------------------------------
    # Edit mode
    # -------------------------------------------------------------------------

    def begin_edit(self, message: Message) -> None:
        """Pre-fill the raw (encoded) content of ``message`` for editing."""
        if message.is_deleted:
            return
        self.editing = message
        self.text = message.content
        self.caret = len(self.text)
        self.mention = None
        self.wants_focus = True

    def cancel_edit(self) -> None:
        self.editing = None
        self.clear()

    # -------------------------------------------------------------------------
    # Keys and submission
    # -------------------------------------------------------------------------

    async def handle_key(self, key: str, modifier: bool = False) -> KeyAction:
        """Apply a key press: Enter sends, modifier+Enter breaks the line, Escape backs out."""
        if key == "Enter":
            if modifier:
                self.insert_newline()
                return KeyAction.NEWLINE
            await self.submit()
            return KeyAction.SUBMIT
        if key == "Escape":
            if self.mention is not None:
                self.close_popup()
                return KeyAction.CLOSE_POPUP
            if self.editing is not None:
                self.cancel_edit()
                return KeyAction.CANCEL_EDIT
        return KeyAction.NONE

    async def submit(self) -> Message | None:
        """Send the trimmed text, or the edit when in edit mode.

        Empty content is refused without touching the network. On failure
        ``ComposeError`` is raised and the text is kept.
        """
        content = self.text.strip()
        if not content or self.sending:
            return None

        if self.editing is not None:
            delivered = self.transport.emit(
                SocketEvent.MESSAGE_EDIT,
                {"messageId": self.editing.id, "content": content},
            )
            if not delivered:
                self.error = "Not connected; edit was not sent"
                raise ComposeError(self.error)
            self.editing = None
            self.clear()
            return None

        if self.channel_id is None:
            raise ComposeError("No active channel")

        self.sending = True
        try:
            ack = await self.transport.call(
                SocketEvent.MESSAGE_SEND,
                {"channelId": self.channel_id, "content": content},
            )
        except TransportError as e:
            self.error = str(e)
            raise ComposeError(self.error) from e
        finally:
            self.sending = False

        if isinstance(ack, dict) and ack.get("error"):
            self.error = str(ack["error"])
            logger.warning(f"Send rejected: {self.error}")
            raise ComposeError(self.error)

        message = self._parse_ack(ack)
        self.clear()
        if message is not None and self.on_sent is not None:
            self.on_sent(message)
        return message

    @staticmethod
    def _parse_ack(ack) -> Message | None:
        if not isinstance(ack, dict):
            return None
        payload = ack.get("message", ack)
        try:
            return Message.model_validate(payload)
        except ValidationError:
            logger.debug(f"Send ack carried no message: {ack!r}")
            return None

    # -------------------------------------------------------------------------
    # Typing signals
    # -------------------------------------------------------------------------

    def _notify_typing(self) -> None:
        if self.channel_id is None or self.editing is not None:
            return
        now = self._clock()
        if self._typing_sent_at is not None and now - self._typing_sent_at < self.settings.typing_throttle_seconds:
            return
        if self.transport.emit(SocketEvent.TYPING_START, {"channelId": self.channel_id}):
            self._typing_sent_at = now

    def _stop_typing(self) -> None:
        if self._typing_sent_at is None:
            return
        self._typing_sent_at = None
        self.transport.emit(SocketEvent.TYPING_STOP, {"channelId": self.channel_id})
