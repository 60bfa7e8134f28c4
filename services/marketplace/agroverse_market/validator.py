"""
Marketplace Service - 入札バリデータ

I/O を持たない純粋関数。トランザクション内で読み直した
最新のスナップショットに対して呼ぶこと。
"""

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict

from .errors import BidTooLowError, InvalidBidAmountError, SelfBidError

# 通貨は小数第2位まで。最低入札額 = 現在の下限 + 0.01
BID_INCREMENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1e10")


class ProductSnapshot(BaseModel):
    """入札判定に必要な集約の状態"""

    model_config = ConfigDict(frozen=True)

    seller_id: str
    starting_price: Decimal
    current_highest_bid: Decimal | None = None
    bid_count: int = 0

    @property
    def floor(self) -> Decimal:
        """入札が超えなければならない金額。初回は開始価格、以降は最高入札額。"""
        return max(self.current_highest_bid or Decimal("0"), self.starting_price)

    @property
    def minimum_next_bid(self) -> Decimal:
        return self.floor + BID_INCREMENT


class Admitted(BaseModel):
    model_config = ConfigDict(frozen=True)

    bid_amount: Decimal
    floor: Decimal


def is_valid_amount(bid_amount: Decimal) -> bool:
    """Numeric(12,2) の列に丸めなしでそのまま保存できる正の金額か"""
    if not bid_amount.is_finite() or not Decimal("0") < bid_amount < MAX_AMOUNT:
        return False
    try:
        return bid_amount == bid_amount.quantize(BID_INCREMENT)
    except InvalidOperation:
        return False


def validate_bid(bid_amount: Decimal, actor_id: str, snapshot: ProductSnapshot) -> Admitted:
    if not is_valid_amount(bid_amount):
        raise InvalidBidAmountError(bid_amount)
    if actor_id == snapshot.seller_id:
        raise SelfBidError()
    floor = snapshot.floor
    # 同額は不可(厳密に上回る必要がある)
    if bid_amount <= floor:
        raise BidTooLowError(floor, snapshot.minimum_next_bid)
    return Admitted(bid_amount=bid_amount, floor=floor)
