"""Broker channel and publish destination names."""
from __future__ import annotations

PUBLIC_CHANNEL = "public-broadcast"

JOIN_DESTINATION = "chat.join"
LEAVE_DESTINATION = "chat.leave"
PUBLIC_SEND_DESTINATION = "chat.send"
PUBLIC_TYPING_DESTINATION = "chat.typing:public"


def inbox_channel(user_id: int) -> str:
    return f"user:{user_id}:inbox"


def errors_channel(user_id: int) -> str:
    return f"user:{user_id}:errors"


def typing_channel(user_id: int) -> str:
    return f"user:{user_id}:typing"


def group_channel(group_id: int) -> str:
    return f"group:{group_id}:broadcast"


def self_channels(user_id: int) -> tuple[str, str, str]:
    return inbox_channel(user_id), errors_channel(user_id), typing_channel(user_id)


def direct_send_destination(peer_id: int) -> str:
    return f"chat.send:{peer_id}"


def group_send_destination(group_id: int) -> str:
    return f"chat.sendGroup:{group_id}"


def typing_destination(target_id: int) -> str:
    return f"chat.typing:{target_id}"
