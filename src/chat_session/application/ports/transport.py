from __future__ import annotations

from typing import Any, Callable, Coroutine, Mapping, Protocol

OnFrame = Callable[[str], Coroutine[Any, Any, None]]
OnClose = Callable[[str], None]


class SubscriptionHandle(Protocol):
    async def unsubscribe(self) -> None: ...


class BrokerTransport(Protocol):
    """One persistent duplex connection to the message broker.

    The transport owns heartbeating. When the connection drops or a heartbeat
    times out it calls ``on_close`` once with a reason.
    """

    async def connect(self, headers: Mapping[str, str], on_close: OnClose) -> None: ...

    async def subscribe(self, channel: str, handler: OnFrame) -> SubscriptionHandle: ...

    async def publish(self, destination: str, body: str, headers: Mapping[str, str]) -> None: ...

    async def close(self) -> None: ...
