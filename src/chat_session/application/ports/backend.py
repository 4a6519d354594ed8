from __future__ import annotations

from typing import Protocol

from chat_session.domain.entities.context import ChatContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.participant import Group, User


class ChatBackend(Protocol):
    """Request/response collaborator for roster, groups and history."""

    async def fetch_active_users(self) -> list[User]: ...

    async def fetch_user_groups(self) -> list[Group]: ...

    async def fetch_history(self, context: ChatContext) -> list[Message]: ...

    async def fetch_is_group_admin(self, group_id: int) -> bool: ...

    async def fetch_group_members(self, group_id: int) -> list[User]: ...
