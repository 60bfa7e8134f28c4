"""
Marketplace Service - クエリハンドラ (CQRS の Read 側)

読み取りはリードモデル(products / bids)から行う。
金額は丸め誤差を避けるため小数第2位までの文字列で返す。
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ProductNotFound
from .ledger import read_snapshot
from .projector import project_display
from .schema import bids, products


def _money(value: Decimal | None) -> str | None:
    return f"{value:.2f}" if value is not None else None


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _product_to_dict(row) -> dict:
    display = project_display(row.starting_price, row.current_highest_bid, row.bid_count)
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "category": row.category,
        "unit": row.unit,
        "image_url": row.image_url,
        "starting_price": _money(row.starting_price),
        "seller_id": row.seller_id,
        "seller_name": row.seller_name,
        "current_highest_bid": _money(row.current_highest_bid),
        "bid_count": row.bid_count,
        "auction_end_time": _iso(row.auction_end_time),
        "created_at": _iso(row.created_at),
        "current_price": _money(display["current_price"]),
        "has_bids": display["has_bids"],
        "minimum_next_bid": _money(display["minimum_next_bid"]),
    }


def _bid_to_dict(row) -> dict:
    return {
        "id": row.id,
        "product_id": row.product_id,
        "bidder_id": row.bidder_id,
        "bidder_name": row.bidder_name,
        "bid_amount": _money(row.bid_amount),
        "bid_time": _iso(row.bid_time),
        "status": row.status,
        "sequence": row.sequence,
    }


async def get_aggregate(session: AsyncSession, product_id: UUID) -> dict:
    """入札判定に使う集約の状態だけを返す。"""
    found = await read_snapshot(session, product_id)
    if found is None:
        raise ProductNotFound(product_id)
    snapshot, _version = found
    return {
        "seller_id": snapshot.seller_id,
        "starting_price": _money(snapshot.starting_price),
        "current_highest_bid": _money(snapshot.current_highest_bid),
        "bid_count": snapshot.bid_count,
    }


async def get_product(session: AsyncSession, product_id: UUID) -> dict | None:
    result = await session.execute(
        select(products).where(products.c.id == str(product_id))
    )
    row = result.fetchone()
    if not row:
        return None
    return _product_to_dict(row)


async def list_products(session: AsyncSession, q: str | None = None) -> list[dict]:
    """新しい順の商品一覧。q があれば名前・説明・カテゴリ・出品者名で絞り込む。"""
    stmt = select(products).order_by(products.c.created_at.desc())
    if q:
        needle = q.lower()
        stmt = stmt.where(
            or_(
                func.lower(products.c.name).contains(needle, autoescape=True),
                func.lower(products.c.description).contains(needle, autoescape=True),
                func.lower(products.c.category).contains(needle, autoescape=True),
                func.lower(products.c.seller_name).contains(needle, autoescape=True),
            )
        )
    result = await session.execute(stmt)
    return [_product_to_dict(row) for row in result.fetchall()]


async def list_bids(session: AsyncSession, product_id: UUID) -> list[dict]:
    """入札履歴を新しい順(コミット順の逆)で返す。"""
    result = await session.execute(
        select(bids)
        .where(bids.c.product_id == str(product_id))
        .order_by(bids.c.sequence.desc())
    )
    return [_bid_to_dict(row) for row in result.fetchall()]
