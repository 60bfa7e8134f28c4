"""Marketplace Service - 一覧・詳細画面向けの表示値を集約から計算する。"""

from decimal import Decimal

from .validator import BID_INCREMENT


def project_display(
    starting_price: Decimal,
    current_highest_bid: Decimal | None,
    bid_count: int,
) -> dict:
    floor = max(current_highest_bid or Decimal("0"), starting_price)
    return {
        "current_price": current_highest_bid if current_highest_bid is not None else starting_price,
        "has_bids": bid_count > 0,
        "minimum_next_bid": floor + BID_INCREMENT,
    }
