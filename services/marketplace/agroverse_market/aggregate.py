"""
Marketplace Service - 商品集約 (Product Aggregate)

products テーブルが集約ドキュメントだが、イベントをリプレイすれば
同じ状態を再構築できる。監査や整合性チェックに使う。
"""

from decimal import Decimal
from uuid import UUID

from .validator import ProductSnapshot


class ProductAggregate:
    """
    商品集約 - イベントから入札状態を再構築する。

    状態遷移:
        (なし) → LISTED        ProductListed
        LISTED → LISTED        BidPlaced (最高入札額が上がり入札数 +1)
    """

    def __init__(self) -> None:
        self.id: UUID | None = None
        self.name: str = ""
        self.seller_id: str = ""
        self.starting_price: Decimal = Decimal("0")
        self.current_highest_bid: Decimal | None = None
        self.bid_count: int = 0
        self.version: int = 0

    # ── イベント適用メソッド ──────────────────────────

    def apply_product_listed(self, data: dict) -> None:
        self.id = UUID(data["product_id"])
        self.name = data["name"]
        self.seller_id = data["seller_id"]
        self.starting_price = Decimal(data["starting_price"])

    def apply_bid_placed(self, data: dict) -> None:
        self.current_highest_bid = Decimal(data["bid_amount"])
        self.bid_count += 1

    # ── イベントリプレイ ─────────────────────────────

    def apply_event(self, event_type: str, event_data: dict) -> None:
        handler = {
            "ProductListed": self.apply_product_listed,
            "BidPlaced": self.apply_bid_placed,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "ProductAggregate":
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    def snapshot(self) -> ProductSnapshot:
        return ProductSnapshot(
            seller_id=self.seller_id,
            starting_price=self.starting_price,
            current_highest_bid=self.current_highest_bid,
            bid_count=self.bid_count,
        )
