from __future__ import annotations

from typing import Protocol, Sequence

from chat_session.application.dto.notice import Notice
from chat_session.domain.entities.context import ChatContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.participant import Group, User
from chat_session.domain.entities.typing_signal import TypingSignal
from chat_session.domain.value_objects.enums import ConnectionState


class SessionObserver(Protocol):
    """UI-facing sink for everything the session derives."""

    def on_connection_state(self, state: ConnectionState) -> None: ...
    def on_context(self, context: ChatContext) -> None: ...
    def on_messages(self, messages: Sequence[Message]) -> None: ...
    def on_typing(self, signals: Sequence[TypingSignal]) -> None: ...
    def on_notice(self, notice: Notice) -> None: ...
    def on_roster(self, users: Sequence[User]) -> None: ...
    def on_groups(self, groups: Sequence[Group]) -> None: ...
    def on_group_members(self, group_id: int, members: Sequence[User]) -> None: ...
    def on_group_admin(self, group_id: int, is_admin: bool) -> None: ...


class NullObserver:
    """Observer that ignores everything; subclass and override what you need."""

    def on_connection_state(self, state: ConnectionState) -> None:
        pass

    def on_context(self, context: ChatContext) -> None:
        pass

    def on_messages(self, messages: Sequence[Message]) -> None:
        pass

    def on_typing(self, signals: Sequence[TypingSignal]) -> None:
        pass

    def on_notice(self, notice: Notice) -> None:
        pass

    def on_roster(self, users: Sequence[User]) -> None:
        pass

    def on_groups(self, groups: Sequence[Group]) -> None:
        pass

    def on_group_members(self, group_id: int, members: Sequence[User]) -> None:
        pass

    def on_group_admin(self, group_id: int, is_admin: bool) -> None:
        pass
