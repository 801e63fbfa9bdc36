# Models package
from discuss.models.channel import Channel
from discuss.models.member import ChannelMember, Deal
from discuss.models.message import DELETED_PLACEHOLDER, Message

__all__ = [
    "Channel",
    "ChannelMember",
    "Deal",
    "Message",
    "DELETED_PLACEHOLDER",
]
