from __future__ import annotations

from enum import StrEnum


class MessageKind(StrEnum):
    CHAT = "CHAT"
    JOIN = "JOIN"
    LEAVE = "LEAVE"
    TYPING = "TYPING"
    GROUP_ADD = "GROUP_ADD"
    GROUP_REMOVE = "GROUP_REMOVE"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class NoticeCategory(StrEnum):
    AUTH = "auth"
    TRANSPORT = "transport"
    APPLICATION = "application"
    DECODE = "decode"
    BACKEND = "backend"
