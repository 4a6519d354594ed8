"""REST collaborator for roster, groups, history and group admin checks."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from chat_session.application.exceptions import AuthError, BackendError, DecodeError, ForbiddenError
from chat_session.application.ports.auth import AuthBoundary
from chat_session.domain.entities.context import ChatContext, DirectContext, GroupContext
from chat_session.domain.entities.message import Message
from chat_session.domain.entities.participant import Group, User
from chat_session.infrastructure.codec.envelope import decode_history_item

logger = logging.getLogger(__name__)


def _image_ref(api_url: str, data: dict[str, Any]) -> str | None:
    image = data.get("image")
    if not isinstance(image, dict) or image.get("id") is None:
        return None
    return f"{api_url}/users/image/download/{image['id']}"


def parse_user(api_url: str, data: dict[str, Any]) -> User:
    return User(
        id=int(data["id"]),
        username=data.get("username") or "",
        email=data.get("email"),
        online=bool(data.get("online") or False),
        status=data.get("status") or "active",
        avatar_ref=_image_ref(api_url, data),
    )


def parse_group(api_url: str, data: dict[str, Any]) -> Group:
    creator_id = data.get("creatorId")
    admins = data.get("groupAdmins") or ([creator_id] if creator_id is not None else [])
    return Group(
        id=int(data["id"]),
        groupname=data.get("groupname") or "",
        creator_id=creator_id,
        members=tuple(parse_user(api_url, m) for m in data.get("members") or []),
        admin_ids=tuple(int(a) for a in admins),
        avatar_ref=_image_ref(api_url, data),
    )


class HttpChatBackend:
    """Implements application.ports.backend.ChatBackend over the chat REST API."""

    def __init__(
        self,
        api_url: str,
        auth: AuthBoundary,
        user_id: int,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._auth = auth
        self._user_id = user_id
        self._client = client or httpx.AsyncClient(base_url=self._api_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_active_users(self) -> list[User]:
        data = await self._get("/users")
        return [parse_user(self._api_url, u) for u in data]

    async def fetch_user_groups(self) -> list[Group]:
        data = await self._get("/users/groups")
        groups = [parse_group(self._api_url, g) for g in data]
        return [g for g in groups if g.has_member(self._user_id)]

    async def fetch_history(self, context: ChatContext) -> list[Message]:
        if isinstance(context, DirectContext):
            data = await self._get(
                "/users/messages/private",
                params={"user1Id": self._user_id, "user2Id": context.peer_id},
            )
        elif isinstance(context, GroupContext):
            data = await self._get(f"/users/messages/group/{context.group_id}")
        else:
            data = await self._get("/users/messages/public")

        messages: list[Message] = []
        for item in data:
            try:
                messages.append(decode_history_item(item, context))
            except DecodeError as exc:
                logger.warning("Skipping history item in %s: %s", context.key, exc.detail)
        return messages

    async def fetch_is_group_admin(self, group_id: int) -> bool:
        return bool(await self._get(f"/groups/{group_id}/isAdmin"))

    async def fetch_group_members(self, group_id: int) -> list[User]:
        data = await self._get(f"/groups/{group_id}/get/members")
        return [parse_user(self._api_url, u) for u in data]

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        token = self._auth.current_credential()
        if not token:
            raise AuthError("Authentication token missing")
        try:
            response = await self._client.get(
                path, params=params, headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise BackendError(f"Request error: {exc}") from exc

        if response.status_code == 401:
            raise AuthError("Unauthorized. Please log in again.")
        if response.status_code == 403:
            raise ForbiddenError(
                _error_detail(response) or "You don't have permission to perform this action."
            )
        if response.is_error:
            raise BackendError(_error_detail(response) or f"{path} failed with {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{path} returned invalid JSON") from exc


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error") or body.get("message")
    return None
