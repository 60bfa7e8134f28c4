"""
Marketplace Service - テーブル定義

products    : 商品の集約ドキュメント(最高入札額・入札数をここに持つ)
bids        : 入札履歴。追記のみで更新しない
event_store : イベントストア。(aggregate_id, version) の UNIQUE 制約が楽観的ロック
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("category", String(100)),
    Column("unit", String(50)),
    Column("image_url", String(500), nullable=False),
    Column("starting_price", Numeric(12, 2), nullable=False),
    Column("seller_id", String(128), nullable=False),
    Column("seller_name", String(255)),
    Column("current_highest_bid", Numeric(12, 2)),
    Column("bid_count", Integer, nullable=False, default=0),
    Column("auction_end_time", DateTime(timezone=True)),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("starting_price > 0", name="chk_product_starting_price_positive"),
    CheckConstraint("bid_count >= 0", name="chk_product_bid_count_non_negative"),
)

bids = Table(
    "bids",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("product_id", String(36), ForeignKey("products.id"), nullable=False),
    Column("bidder_id", String(128), nullable=False),
    Column("bidder_name", String(255)),
    Column("bid_amount", Numeric(12, 2), nullable=False),
    Column("bid_time", DateTime(timezone=True), nullable=False),
    Column("status", String(20), nullable=False, default="active"),
    # 受理順(= コミット順)。1 始まり
    Column("sequence", Integer, nullable=False),
    CheckConstraint("bid_amount > 0", name="chk_bid_amount_positive"),
    UniqueConstraint("product_id", "sequence", name="uq_bids_product_sequence"),
)

event_store = Table(
    "event_store",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("aggregate_id", String(36), nullable=False),
    Column("aggregate_type", String(50), nullable=False),
    Column("event_type", String(100), nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("aggregate_id", "version", name="uq_event_store_aggregate_version"),
)


async def init_schema(engine: AsyncEngine) -> None:
    """起動時にテーブルを作成する(既存なら何もしない)。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
