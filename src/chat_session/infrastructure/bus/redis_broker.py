"""Redis Pub/Sub broker transport: one connection, many channel subscriptions."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chat_session.application.exceptions import NotConnectedError, TransportError
from chat_session.application.ports.transport import OnClose, OnFrame

logger = logging.getLogger(__name__)


def wrap_frame(destination: str, headers: Mapping[str, str], body: str) -> str:
    return json.dumps({"destination": destination, "headers": dict(headers), "body": body})


def unwrap_frame(data: str | bytes) -> str:
    """Return the body of a published frame; raw payloads pass through."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    try:
        frame = json.loads(data)
    except ValueError:
        return data
    if isinstance(frame, dict) and isinstance(frame.get("body"), str):
        return frame["body"]
    return data


class RedisSubscription:
    def __init__(self, transport: RedisBrokerTransport, channel: str, handler: OnFrame) -> None:
        self._transport = transport
        self.channel = channel
        self._handler = handler

    async def unsubscribe(self) -> None:
        await self._transport._unsubscribe(self.channel, self._handler)


class RedisBrokerTransport:
    """Implements application.ports.transport.BrokerTransport.

    Publishes go to a channel named after the destination, wrapped in a JSON
    frame carrying the connect headers merged with the per-publish headers.
    A background reader dispatches incoming frames and pings the server once
    the connection has been idle for a heartbeat interval; a second idle
    interval without any traffic is reported as a heartbeat timeout.
    """

    def __init__(self, url: str, *, heartbeat_seconds: float = 4.0) -> None:
        self._url = url
        self._heartbeat = heartbeat_seconds
        self._redis: aioredis.Redis | None = None
        self._pubsub: Any = None
        self._headers: dict[str, str] = {}
        self._handlers: dict[str, OnFrame] = {}
        self._on_close: OnClose | None = None
        self._task: asyncio.Task[None] | None = None
        self._last_seen = 0.0

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self, headers: Mapping[str, str], on_close: OnClose) -> None:
        if self._redis is not None:
            await self.close()
        redis = aioredis.from_url(
            self._url,
            decode_responses=True,
            health_check_interval=self._heartbeat,
            socket_connect_timeout=self._heartbeat,
        )
        try:
            await redis.ping()
        except RedisError as exc:
            await redis.aclose()
            raise TransportError(str(exc) or type(exc).__name__) from exc

        self._redis = redis
        self._pubsub = redis.pubsub()
        self._headers = dict(headers)
        self._on_close = on_close
        self._last_seen = asyncio.get_running_loop().time()
        logger.info("Broker connected: %s (user=%s)", self._url, self._headers.get("userId"))

    async def subscribe(self, channel: str, handler: OnFrame) -> RedisSubscription:
        if self._pubsub is None:
            raise NotConnectedError("Broker is not connected")
        try:
            await self._pubsub.subscribe(channel)
        except RedisError as exc:
            raise TransportError(f"Subscribe to {channel} failed: {exc}") from exc
        self._handlers[channel] = handler
        if self._task is None:
            # The pubsub connection exists only after the first subscribe.
            self._task = asyncio.create_task(self._listen(), name="redis-broker-reader")
        return RedisSubscription(self, channel, handler)

    async def publish(self, destination: str, body: str, headers: Mapping[str, str]) -> None:
        if self._redis is None:
            raise NotConnectedError("Broker is not connected")
        frame = wrap_frame(destination, {**self._headers, **headers}, body)
        try:
            await self._redis.publish(destination, frame)
        except RedisError as exc:
            raise TransportError(f"Publish to {destination} failed: {exc}") from exc

    async def close(self) -> None:
        """Close without reporting through ``on_close``."""
        self._on_close = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        pubsub, self._pubsub = self._pubsub, None
        redis, self._redis = self._redis, None
        self._handlers.clear()
        try:
            if pubsub is not None:
                await pubsub.aclose()
            if redis is not None:
                await redis.aclose()
        except RedisError as exc:
            raise TransportError(str(exc)) from exc
        logger.info("Broker connection closed")

    async def _unsubscribe(self, channel: str, handler: OnFrame) -> None:
        if self._handlers.get(channel) is not handler:
            return
        del self._handlers[channel]
        if self._pubsub is None:
            return
        try:
            await self._pubsub.unsubscribe(channel)
        except RedisError as exc:
            raise TransportError(f"Unsubscribe from {channel} failed: {exc}") from exc

    async def _listen(self) -> None:
        loop = asyncio.get_running_loop()
        reason = "connection closed"
        try:
            while True:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._heartbeat,
                )
                now = loop.time()
                if message is None:
                    idle = now - self._last_seen
                    if idle >= 2 * self._heartbeat:
                        reason = "heartbeat timeout"
                        break
                    if idle >= self._heartbeat:
                        await self._pubsub.ping()
                    continue
                self._last_seen = now
                if message.get("type") != "message":
                    continue
                channel = message["channel"]
                handler = self._handlers.get(channel)
                if handler is None:
                    continue
                try:
                    await handler(unwrap_frame(message["data"]))
                except Exception:
                    logger.exception("Error processing frame on %s", channel)
        except RedisError as exc:
            reason = str(exc) or type(exc).__name__
        await self._report_closed(reason)

    async def _report_closed(self, reason: str) -> None:
        on_close, self._on_close = self._on_close, None
        self._task = None
        self._handlers.clear()
        pubsub, self._pubsub = self._pubsub, None
        redis, self._redis = self._redis, None
        try:
            if pubsub is not None:
                await pubsub.aclose()
            if redis is not None:
                await redis.aclose()
        except RedisError:
            logger.debug("Ignoring error while discarding a dead connection", exc_info=True)
        logger.warning("Broker connection lost: %s", reason)
        if on_close is not None:
            on_close(reason)
