"""
Marketplace Service - 入札トランザクション実行

1 回の試行 = 1 トランザクション:
    1. 集約ドキュメント(products 行)をトランザクション内で読み直す
    2. バリデータで判定する(拒否ならここで中断、書き込みなし)
    3. version が読んだときのままなら最高入札額と入札数を更新する (CAS)
    4. 入札履歴とイベントを同じトランザクションで追記する
    5. コミット

3 で更新件数が 0 件、または 4 で UNIQUE 制約違反なら、読み込み後に
別の入札が先にコミットされたということ。試行全体をやり直す。
やり直しでは最新の下限で再判定されるので、先にコミットされた入札を
上回れない入札は BidTooLowError になる。
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import event_store
from .errors import LedgerUnavailable, ProductNotFound
from .events import BidPlaced
from .schema import bids, products
from .validator import ProductSnapshot, validate_bid

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
RETRY_BACKOFF_SECONDS = 0.02


class VersionConflict(Exception):
    """読み込み後に別のトランザクションが同じ集約を更新した"""


# 同じバージョン・同じ受理順への二重書き込みを示す UNIQUE 制約。
# PostgreSQL は制約名を、SQLite は列名をエラーメッセージに含める。
_CONFLICT_MARKERS = (
    "uq_event_store_aggregate_version",
    "uq_bids_product_sequence",
    "event_store.aggregate_id, event_store.version",
    "bids.product_id, bids.sequence",
)


def is_version_conflict(error: IntegrityError) -> bool:
    """CHECK や外部キー違反は競合ではないので再試行しない"""
    message = str(error.orig)
    return any(marker in message for marker in _CONFLICT_MARKERS)


class PlacedBid(BaseModel):
    """受理された入札と、更新後の集約の状態"""

    bid_id: UUID
    product_id: UUID
    bidder_id: str
    bidder_name: str | None
    bid_amount: Decimal
    bid_time: datetime
    sequence: int
    current_highest_bid: Decimal
    bid_count: int
    version: int
    attempts: int = 1


async def read_snapshot(
    session: AsyncSession, product_id: UUID
) -> tuple[ProductSnapshot, int] | None:
    """集約の現在の状態とバージョンを返す。存在しなければ None。"""
    result = await session.execute(
        select(
            products.c.seller_id,
            products.c.starting_price,
            products.c.current_highest_bid,
            products.c.bid_count,
            products.c.version,
        ).where(products.c.id == str(product_id))
    )
    row = result.fetchone()
    if not row:
        return None
    snapshot = ProductSnapshot(
        seller_id=row.seller_id,
        starting_price=row.starting_price,
        current_highest_bid=row.current_highest_bid,
        bid_count=row.bid_count,
    )
    return snapshot, row.version


async def _attempt(
    session: AsyncSession,
    product_id: UUID,
    bidder_id: str,
    bidder_name: str | None,
    bid_amount: Decimal,
) -> PlacedBid:
    found = await read_snapshot(session, product_id)
    if found is None:
        raise ProductNotFound(product_id)
    snapshot, version = found

    validate_bid(bid_amount, bidder_id, snapshot)

    now = datetime.now(timezone.utc)
    result = await session.execute(
        update(products)
        .where(products.c.id == str(product_id), products.c.version == version)
        .values(
            current_highest_bid=bid_amount,
            bid_count=products.c.bid_count + 1,
            version=products.c.version + 1,
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        raise VersionConflict(f"product {product_id} changed after version {version}")

    bid_id = uuid4()
    bid_count = snapshot.bid_count + 1
    await session.execute(
        insert(bids).values(
            id=str(bid_id),
            product_id=str(product_id),
            bidder_id=bidder_id,
            bidder_name=bidder_name,
            bid_amount=bid_amount,
            bid_time=now,
            status="active",
            sequence=bid_count,
        )
    )

    event = BidPlaced(
        product_id=product_id,
        bid_id=bid_id,
        bidder_id=bidder_id,
        bidder_name=bidder_name,
        bid_amount=bid_amount,
        bid_count=bid_count,
        timestamp=now,
    )
    new_version = await event_store.append_event(
        session, product_id, "Product", "BidPlaced", event.model_dump(mode="json"), version
    )

    return PlacedBid(
        bid_id=bid_id,
        product_id=product_id,
        bidder_id=bidder_id,
        bidder_name=bidder_name,
        bid_amount=bid_amount,
        bid_time=now,
        sequence=bid_count,
        current_highest_bid=bid_amount,
        bid_count=bid_count,
        version=new_version,
    )


async def place_bid(
    session_factory: sessionmaker,
    product_id: UUID,
    bidder_id: str,
    bidder_name: str | None,
    bid_amount: Decimal,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> PlacedBid:
    """
    入札を原子的に適用する。

    入札の拒否 (SelfBidError / BidTooLowError / InvalidBidAmountError)、ProductNotFound、
    競合以外の制約違反は再試行せずそのまま送出する。
    接続できない場合も一時的なエラーとして扱う。
    競合と一時的な DB エラーは max_attempts 回まで再試行し、
    使い切ったら LedgerUnavailable を送出する。
    """
    for attempt in range(1, max_attempts + 1):
        try:
            async with session_factory() as session:
                placed = await _attempt(
                    session, product_id, bidder_id, bidder_name, bid_amount
                )
                await session.commit()
        except VersionConflict as e:
            logger.warning(
                "Bid conflict on product %s (attempt %d/%d): %s",
                product_id, attempt, max_attempts, e,
            )
        except IntegrityError as e:
            if not is_version_conflict(e):
                raise
            logger.warning(
                "Bid conflict on product %s (attempt %d/%d): %s",
                product_id, attempt, max_attempts, e,
            )
        except (OperationalError, InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "Ledger error on product %s (attempt %d/%d): %s",
                product_id, attempt, max_attempts, e,
            )
        else:
            logger.info(
                "Bid admitted: product=%s amount=%s count=%d attempt=%d",
                product_id, placed.bid_amount, placed.bid_count, attempt,
            )
            return placed.model_copy(update={"attempts": attempt})

        if attempt < max_attempts:
            await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    logger.error(
        "Giving up on bid for product %s after %d attempts", product_id, max_attempts
    )
    raise LedgerUnavailable()
