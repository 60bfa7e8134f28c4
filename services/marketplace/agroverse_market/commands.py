"""
Marketplace Service - コマンドハンドラ (CQRS の Write 側)

コマンドは状態を変更する操作で、イベントをストアに保存すると同時に
リードモデル(products / bids)も更新する。コミット後に
Redis Pub/Sub でイベントを発行し、ライブ入札フィードなどに通知する。
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import event_store, ledger
from .aggregate import ProductAggregate
from .errors import BidTooLowError, InvalidBidAmountError, NotAFarmerError, SelfBidError
from .events import BidPlaced, ProductListed
from .schema import products

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "marketplace_events"
FARMER_ROLE = "farmer"


async def publish_event(redis: aioredis.Redis, event_type: str, data: dict) -> None:
    """
    コミット済みのイベントを発行する。

    発行に失敗してもコミット済みの状態は取り消さない。
    """
    try:
        await redis.publish(
            EVENTS_CHANNEL,
            json.dumps({"event_type": event_type, "data": data}, default=str),
        )
    except RedisError:
        logger.exception("Failed to publish %s", event_type)


async def list_product(
    session: AsyncSession,
    redis: aioredis.Redis,
    seller_id: str,
    seller_role: str,
    seller_name: str | None,
    name: str,
    description: str,
    starting_price: Decimal,
    image_url: str,
    category: str | None = None,
    unit: str | None = None,
    auction_end_time: datetime | None = None,
) -> ProductAggregate:
    """
    出品コマンド

    1. 出品者が農家ロールか確認
    2. ProductListed イベントをイベントストアに追記 (version 1)
    3. 集約ドキュメント(products 行)を作成
    4. Redis Pub/Sub でイベントを発行
    """
    if seller_role != FARMER_ROLE:
        raise NotAFarmerError(seller_role)

    product_id = uuid4()
    now = datetime.now(timezone.utc)
    seller_name = seller_name or "Unknown Seller"
    event = ProductListed(
        product_id=product_id,
        name=name,
        seller_id=seller_id,
        seller_name=seller_name,
        starting_price=starting_price,
        timestamp=now,
    )
    event_data = event.model_dump(mode="json")

    version = await event_store.append_event(
        session, product_id, "Product", "ProductListed", event_data, 0
    )

    await session.execute(
        insert(products).values(
            id=str(product_id),
            name=name,
            description=description,
            category=category,
            unit=unit,
            image_url=image_url,
            starting_price=starting_price,
            seller_id=seller_id,
            seller_name=seller_name,
            current_highest_bid=None,
            bid_count=0,
            auction_end_time=auction_end_time,
            version=version,
            created_at=now,
            updated_at=now,
        )
    )
    await session.commit()
    logger.info("Product listed: id=%s seller=%s", product_id, seller_id)

    await publish_event(redis, "ProductListed", event_data)

    agg = ProductAggregate()
    agg.apply_product_listed(event_data)
    agg.version = version
    return agg


async def place_bid(
    session_factory: sessionmaker,
    redis: aioredis.Redis,
    product_id: UUID,
    bidder_id: str,
    bidder_name: str | None,
    bid_amount: Decimal,
    max_attempts: int = ledger.DEFAULT_MAX_ATTEMPTS,
) -> ledger.PlacedBid:
    """
    入札コマンド

    トランザクションごとに新しいセッションが必要なので、
    セッションではなくセッションファクトリを受け取る。
    """
    try:
        placed = await ledger.place_bid(
            session_factory,
            product_id,
            bidder_id,
            bidder_name or "Anonymous Bidder",
            bid_amount,
            max_attempts=max_attempts,
        )
    except (SelfBidError, BidTooLowError, InvalidBidAmountError) as e:
        logger.info(
            "Bid rejected: product=%s bidder=%s amount=%s reason=%s",
            product_id, bidder_id, bid_amount, e.code,
        )
        raise

    event = BidPlaced(
        product_id=placed.product_id,
        bid_id=placed.bid_id,
        bidder_id=placed.bidder_id,
        bidder_name=placed.bidder_name,
        bid_amount=placed.bid_amount,
        bid_count=placed.bid_count,
        timestamp=placed.bid_time,
    )
    await publish_event(redis, "BidPlaced", event.model_dump(mode="json"))
    return placed
