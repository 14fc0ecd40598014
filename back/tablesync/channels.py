"""
Push channel transports.

Two ways to hear about order changes:
- WebSocketChannel connects to the WS bridge (`/ws/tenant/{tenant_id}` for
  staff, `/ws/table/{table_token}` for a table) with the bearer token.
- RedisChannel subscribes to the bridge's own Redis channels
  (`orders:tenant:{tenant_id}` / `orders:table:{table_id}`) when the service
  runs inside the same network as Redis.

Both reconnect on their own after `reconnect_delay` seconds and report every
state change to the listener, which re-syncs on each (re)connect.
"""
import asyncio
import json
import logging
from typing import Protocol
from urllib.parse import quote

import redis.asyncio as redis
from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)


class ChannelListener(Protocol):
    async def on_connecting(self) -> None: ...

    async def on_connected(self) -> None: ...

    async def on_disconnected(self, reason: str) -> None: ...

    async def on_event(self, name: str, payload: dict) -> None: ...


class PushChannel(Protocol):
    async def run(self, listener: ChannelListener) -> None: ...


def parse_event(message: str | bytes) -> tuple[str, dict] | None:
    """
    Decode one push message into (event name, payload).

    Accepts `{"event": name, "data": {...}}` envelopes as well as the flat
    `{"type": name, ...}` messages the POS API publishes.
    """
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    try:
        data = json.loads(message)
    except ValueError:
        logger.warning(f"Ignoring non-JSON push message: {message[:200]!r}")
        return None
    if not isinstance(data, dict):
        return None

    name = data.get("event") or data.get("type")
    if not name:
        return None
    payload = data.get("data") if isinstance(data.get("data"), dict) else data
    return str(name), payload


class WebSocketChannel:
    def __init__(self, url: str, token: str | None = None, reconnect_delay: float = 5.0):
        self.url = url
        self.token = token
        self.reconnect_delay = reconnect_delay

    @classmethod
    def for_tenant(cls, ws_url: str, tenant_id: int, token: str, reconnect_delay: float = 5.0) -> "WebSocketChannel":
        url = f"{ws_url.rstrip('/')}/ws/tenant/{tenant_id}?token={quote(token)}"
        return cls(url, token, reconnect_delay)

    @classmethod
    def for_table(cls, ws_url: str, table_token: str, reconnect_delay: float = 5.0) -> "WebSocketChannel":
        return cls(f"{ws_url.rstrip('/')}/ws/table/{quote(table_token)}", None, reconnect_delay)

    async def run(self, listener: ChannelListener) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        while True:
            await listener.on_connecting()
            reason = "closed by server"
            try:
                async with connect(self.url, additional_headers=headers) as ws:
                    await listener.on_connected()
                    async for message in ws:
                        event = parse_event(message)
                        if event:
                            await listener.on_event(*event)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as e:
                reason = str(e) or e.__class__.__name__
                logger.error(f"WebSocket channel error: {reason}", exc_info=True)
            await listener.on_disconnected(reason)
            await asyncio.sleep(self.reconnect_delay)


class RedisChannel:
    def __init__(self, redis_url: str, patterns: list[str], reconnect_delay: float = 5.0):
        self.redis_url = redis_url
        self.patterns = patterns
        self.reconnect_delay = reconnect_delay

    @classmethod
    def for_tenant(cls, redis_url: str, tenant_id: int, reconnect_delay: float = 5.0) -> "RedisChannel":
        return cls(redis_url, [f"orders:tenant:{tenant_id}"], reconnect_delay)

    @classmethod
    def for_table(cls, redis_url: str, table_id: int, reconnect_delay: float = 5.0) -> "RedisChannel":
        return cls(redis_url, [f"orders:table:{table_id}"], reconnect_delay)

    async def run(self, listener: ChannelListener) -> None:
        while True:
            await listener.on_connecting()
            reason = "subscription ended"
            r = redis.from_url(self.redis_url)
            try:
                pubsub = r.pubsub()
                await pubsub.psubscribe(*self.patterns)
                await listener.on_connected()

                async for message in pubsub.listen():
                    if message["type"] != "pmessage":
                        continue
                    event = parse_event(message["data"])
                    if event:
                        await listener.on_event(*event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = str(e) or e.__class__.__name__
                logger.error(f"Redis connection error: {reason}", exc_info=True)
            finally:
                await r.aclose()
            await listener.on_disconnected(reason)
            await asyncio.sleep(self.reconnect_delay)
