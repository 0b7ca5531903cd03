"""
Storefront Service — リクエスト / レスポンスモデル

フロントエンド (checkout.html) が送る camelCase の JSON をそのまま受ける。
必須項目の空チェックはオーケストレーターの検証ステップで行うため、
ここでは型だけを定義し、連絡先の各項目は省略可能にしている。
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerInfo(CamelModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None


class CartItem(CamelModel):
    id: int
    name: str
    price: Decimal
    quantity: int


class SubmitOrderRequest(CamelModel):
    customer_info: CustomerInfo | None = None
    cart_items: list[CartItem] | None = None
    delivery_notes: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str


class TestEmailRequest(BaseModel):
    email: str | None = None


class OrderDetails(CamelModel):
    order_id: int
    order_number: str
    total_amount: float
    item_count: int
    payment_method: str = "Cash on Delivery"
    estimated_delivery: str = "2-3 business days"
    email_status: str = "Sending confirmation emails..."


class SubmitOrderResponse(CamelModel):
    success: bool = True
    message: str = "Order placed successfully! Confirmation emails are being sent."
    order_details: OrderDetails
