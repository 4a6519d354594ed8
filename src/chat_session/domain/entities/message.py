from __future__ import annotations

from dataclasses import dataclass, replace

from chat_session.domain.value_objects.enums import MessageKind


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    sender_id: int | None
    sender_name: str
    sender_avatar_ref: str | None
    content: str
    timestamp: str
    kind: MessageKind = MessageKind.CHAT
    recipient_id: int | None = None
    recipient_name: str | None = None
    group_id: int | None = None
    group_name: str | None = None
    is_local_echo: bool = False

    def __post_init__(self) -> None:
        if self.kind == MessageKind.CHAT and self.recipient_id is not None and self.group_id is not None:
            raise ValueError("A chat message is addressed to a peer or a group, not both")

    @property
    def is_public(self) -> bool:
        return self.recipient_id is None and self.group_id is None

    @property
    def fingerprint(self) -> tuple[int | None, str, str]:
        """Identity used when the broker did not assign an id."""
        return self.sender_id, self.content, self.timestamp

    def context_key(self, self_id: int) -> str:
        """Key of the context this message belongs to, seen from ``self_id``."""
        if self.group_id is not None:
            return f"group:{self.group_id}"
        if self.recipient_id is not None:
            peer = self.recipient_id if self.sender_id == self_id else self.sender_id
            return f"direct:{peer}"
        return "public"

    def confirmed(self, server_copy: Message | None = None) -> Message:
        """Return the reconciled form of a local echo."""
        if server_copy is not None:
            return replace(server_copy, is_local_echo=False)
        return replace(self, is_local_echo=False)
