"""
Socket event names exchanged with the Discuss server.
"""

from enum import Enum


class SocketEvent(str, Enum):
    """Closed set of Socket.IO events used by the chat core."""

    # Outbound
    CHANNEL_JOIN = "channel:join"
    CHANNEL_LEAVE = "channel:leave"
    MESSAGE_SEND = "message:send"
    MESSAGE_EDIT = "message:edit"
    MESSAGE_DELETE = "message:delete"

    # Inbound
    MESSAGE_NEW = "message:new"
    MESSAGE_EDITED = "message:edited"
    MESSAGE_DELETED = "message:deleted"

    # Both directions
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"


class ConnectionState(str, Enum):
    """Transport session lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
