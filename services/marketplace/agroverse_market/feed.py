"""
Marketplace Service - ライブ入札フィード

marketplace_events チャネルを購読し、指定した商品の BidPlaced だけを
取り出して流す。WebSocket エンドポイントから使う。

注意: Redis Pub/Sub は fire-and-forget 方式。
購読前・切断中のイベントは届かないので、クライアントは接続時に
/queries/products/{id}/bids で履歴を取り直すこと。
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from uuid import UUID

import redis.asyncio as aioredis

from .commands import EVENTS_CHANNEL

logger = logging.getLogger(__name__)


def match_bid_event(message: dict | None, product_id: UUID) -> dict | None:
    """Pub/Sub メッセージが対象商品の BidPlaced ならイベントデータを返す。"""
    if not message or message.get("type") != "message":
        return None
    try:
        event = json.loads(message["data"])
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed message on %s", EVENTS_CHANNEL)
        return None
    if event.get("event_type") != "BidPlaced":
        return None
    data = event.get("data", {})
    if data.get("product_id") != str(product_id):
        return None
    return data


async def bid_events(
    redis: aioredis.Redis,
    product_id: UUID,
    poll_timeout: float = 1.0,
) -> AsyncIterator[dict]:
    pubsub = redis.pubsub()
    await pubsub.subscribe(EVENTS_CHANNEL)
    logger.info("Following bids for product %s", product_id)

    try:
        while True:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=poll_timeout
            )
            data = match_bid_event(message, product_id)
            if data is not None:
                yield data
            elif message is None:
                await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(EVENTS_CHANNEL)
        await pubsub.aclose()
