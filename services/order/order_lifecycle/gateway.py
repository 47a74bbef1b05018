"""
Order Service — メッセージゲートウェイ

Validator / Allocator との非同期メッセージングを Redis Pub/Sub で行う。

  ┌───────────────┐  validation.request   ┌───────────┐
  │ Order Service │ ────── Redis ───────▶ │ Validator │
  │               │ ◀──────────────────── │           │
  │               │  validation.response  └───────────┘
  │               │  allocation.request   ┌───────────┐
  │               │ ────── Redis ───────▶ │ Allocator │
  │               │ ◀──────────────────── │           │
  └───────────────┘  allocation.response  └───────────┘

注意: Redis Pub/Sub は fire-and-forget 方式。
購読者がいない間に送られたメッセージは失われる。
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as aioredis
from pydantic import BaseModel

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict], Awaitable[None]]


class MessageGateway(Protocol):
    async def send(self, channel: str, payload: BaseModel | dict) -> None: ...

    def on_message(self, channel: str, handler: MessageHandler) -> None: ...


def encode_payload(payload: BaseModel | dict) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return json.dumps(payload, default=str)


class RedisMessageGateway:
    """Redis Pub/Sub 上の MessageGateway 実装"""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis
        self.handlers: dict[str, list[MessageHandler]] = {}

    async def send(self, channel: str, payload: BaseModel | dict) -> None:
        await self.redis.publish(channel, encode_payload(payload))
        logger.debug("Published message to %s", channel)

    def on_message(self, channel: str, handler: MessageHandler) -> None:
        self.handlers.setdefault(channel, []).append(handler)

    async def dispatch(self, channel: str, data: Any) -> None:
        """受信したメッセージを登録済みハンドラへ渡す。"""
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.error("Dropped malformed message on %s: %r", channel, data)
            return

        for handler in self.handlers.get(channel, []):
            try:
                await handler(payload)
            except Exception:
                logger.exception("Failed to handle message on %s", channel)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        登録済みのチャネルをすべて購読し、受信したメッセージを処理する。
        shutdown_event がセットされるまで無限ループで待機する。
        """
        channels = list(self.handlers)
        if not channels:
            logger.warning("No message handlers registered; subscriber not started")
            return

        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*channels)
        logger.info("Subscribed to channels: %s", ", ".join(channels))

        try:
            while not shutdown_event.is_set():
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message and message["type"] == "message":
                    await self.dispatch(message["channel"], message["data"])
                else:
                    await asyncio.sleep(0.1)
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
