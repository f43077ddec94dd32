"""Realtime event names and frame layout shared by the gateway and the client."""

from enum import Enum
from typing import Any
from uuid import UUID

ACK_EVENT = "ack"


class ClientEvent(str, Enum):
    """Events a client may send to the gateway"""

    CONVERSATION_JOIN = "conversation:join"
    CONVERSATION_LEAVE = "conversation:leave"
    MESSAGE_SEND = "message:send"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    MESSAGES_READ = "messages:read"
    USERS_ONLINE = "users:online"


class ServerEvent(str, Enum):
    """Events the gateway pushes to clients"""

    MESSAGE_NEW = "message:new"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    MESSAGES_READ = "messages:read"
    CONVERSATION_UPDATED = "conversation:updated"
    USER_ONLINE = "user:online"
    USER_OFFLINE = "user:offline"


def room_for(conversation_id: UUID | str) -> str:
    return f"conv:{conversation_id}"


def build_frame(event: str | Enum, data: Any = None, ack: int | None = None) -> dict[str, Any]:
    """
    Frames are JSON objects: {"event": ..., "data": ...} with an optional
    integer "ack" id. A reply to an acknowledged frame has event "ack" and
    echoes the id; an error reply carries {"error": ..., "code": ...} as data.
    """
    name = event.value if isinstance(event, Enum) else event
    frame: dict[str, Any] = {"event": name, "data": data}
    if ack is not None:
        frame["ack"] = ack
    return frame
