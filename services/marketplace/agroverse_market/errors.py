"""
Marketplace Service - ドメインエラー

コマンドハンドラはこれらを送出し、main.py の例外ハンドラが HTTP に変換する。
どのエラーもユーザーが次に何をすべきか分かるメッセージを持つ。
"""

from decimal import Decimal


class MarketplaceError(Exception):
    code = "marketplace_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class SelfBidError(MarketplaceError):
    """出品者が自分の商品に入札しようとした"""

    code = "self_bid"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("You cannot bid on your own product.")


class BidTooLowError(MarketplaceError):
    """入札額が現在の最低ライン(開始価格 or 最高入札額)以下だった"""

    code = "bid_too_low"
    status_code = 409

    def __init__(self, floor: Decimal, minimum_required: Decimal) -> None:
        super().__init__(
            f"Bid must be greater than {floor:.2f}. "
            f"Please bid at least {minimum_required:.2f}."
        )
        self.floor = floor
        self.minimum_required = minimum_required

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "floor": str(self.floor),
            "minimum_required": str(self.minimum_required),
        }


class ProductNotFound(MarketplaceError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_id) -> None:
        super().__init__("Product not found or has been removed.")
        self.product_id = product_id


class NotAFarmerError(MarketplaceError):
    code = "not_a_farmer"
    status_code = 403

    def __init__(self, role: str) -> None:
        super().__init__(
            f"Only users with the farmer role can list products (your role: {role})."
        )
        self.role = role


class InvalidBidAmountError(MarketplaceError):
    """入札額が正の値でない、または小数第3位以下を含む"""

    code = "invalid_bid_amount"
    status_code = 422

    def __init__(self, bid_amount: Decimal) -> None:
        super().__init__(
            f"Bid amount must be a positive amount with at most 2 decimal places (got {bid_amount})."
        )
        self.bid_amount = bid_amount


class LedgerUnavailable(MarketplaceError):
    """再試行上限に達した、または DB に接続できなかった"""

    code = "ledger_unavailable"
    status_code = 503

    def __init__(self, message: str = "The marketplace is busy. Please try again.") -> None:
        super().__init__(message)
