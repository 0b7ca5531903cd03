"""
Storefront Service — ドメインモデル

HTTP のリクエスト形式 (camelCase) とは切り離した、コマンド側の入力・出力。
金額はすべて Decimal で扱い、小数第2位に丸めてから掛け算・合計する。
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

CENT = Decimal("0.01")
DEFAULT_POSTAL_CODE = "00000"


def to_money(value) -> Decimal:
    """DB ドライバが返す float / str / Decimal を 2 桁の Decimal に揃える。"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class ContactProfile(BaseModel):
    full_name: str
    email: str
    phone: str
    address: str
    city: str
    postal_code: str = DEFAULT_POSTAL_CODE


class LineItem(BaseModel):
    product_id: int
    name: str
    price: Decimal
    quantity: int

    @property
    def unit_price(self) -> Decimal:
        return to_money(self.price)

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderReceipt(BaseModel):
    order_id: int
    order_number: str
    total_amount: Decimal
    item_count: int


def order_total(items: list[LineItem]) -> Decimal:
    return sum((item.subtotal for item in items), Decimal("0.00"))


class OrderEmailContext(BaseModel):
    """通知メールの描画に必要な注文情報（DB を再読込しないスナップショット）。"""

    order_number: str
    customer: ContactProfile
    items: list[LineItem]
    total_amount: Decimal
    order_date: datetime
    delivery_notes: str | None = None
