from __future__ import annotations

from dataclasses import dataclass

from chat_session.domain.value_objects.enums import NoticeCategory


@dataclass(frozen=True, slots=True)
class Notice:
    """Advisory message surfaced to the user."""

    category: NoticeCategory
    text: str
    fatal: bool = False
