"""
Marketplace Service - イベント定義

イベントは過去形で命名し、不変として扱う。
金額は JSON に載せるため文字列化した Decimal で保存する。
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class ProductListed(BaseModel):
    """農家が商品を出品した"""
    product_id: UUID
    name: str
    seller_id: str
    seller_name: str | None = None
    starting_price: Decimal
    timestamp: datetime


class BidPlaced(BaseModel):
    """入札が受理された(集約の最高入札額と入札数が更新された)"""
    product_id: UUID
    bid_id: UUID
    bidder_id: str
    bidder_name: str | None = None
    bid_amount: Decimal
    bid_count: int
    timestamp: datetime
