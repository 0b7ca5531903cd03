"""
Storefront Service — 注文受付オーケストレーター

1 リクエスト分の注文受付フローを制御する。

  ┌──────────────────────────────────────────────────────────────┐
  │  1. 入力検証            失敗 → ValidationError (副作用なし)   │
  │  2. 顧客の検索/作成     失敗 → 中断 (注文は作られない)        │
  │  3. 注文の書き込み      失敗 → 中断 (2 で作った顧客は残る)    │
  │  ── ここまでの結果だけがレスポンスに反映される ──             │
  │  4. 在庫の減算 (明細ごと)   失敗 → ログのみ、次の明細へ       │
  │  5. OrderPlaced の発行      失敗 → ログのみ                   │
  │  6. 通知メールの登録        送信結果は待たない                │
  └──────────────────────────────────────────────────────────────┘

1〜3 のエラーは分類済みの CheckoutError としてそのまま呼び出し元へ伝播する。
4〜6 の失敗は PartialDegradation として記録し、注文はそのまま確定扱い。
失敗時の再試行は呼び出し側の再送に任せる（キューや自動リトライは持たない）。
"""

import logging
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .commands import CustomerResolver, OrderWriter, StockAdjuster
from .errors import CheckoutError, PartialDegradation, ValidationError
from .events import OrderEventPublisher, OrderPlaced
from .models import DEFAULT_POSTAL_CODE, ContactProfile, LineItem, OrderEmailContext, OrderReceipt
from .notifications import NotificationQueue
from .schemas import SubmitOrderRequest

logger = logging.getLogger(__name__)

REQUIRED_CONTACT_FIELDS = {
    "full_name": "fullName",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "city": "city",
}


class SubmissionResult(BaseModel):
    customer_id: int
    receipt: OrderReceipt
    degradations: list[PartialDegradation] = Field(default_factory=list)
    steps: list[dict] = Field(default_factory=list)


def validate_submission(req: SubmitOrderRequest) -> tuple[ContactProfile, list[LineItem]]:
    """入力を検証してドメインモデルに変換する。DB には一切触れない。"""
    info = req.customer_info
    if info is None or not req.cart_items:
        raise ValidationError("Missing required order data")

    for attr, field in REQUIRED_CONTACT_FIELDS.items():
        value = getattr(info, attr)
        if not value or not value.strip():
            raise ValidationError(f"Missing required field: {field}")

    items = []
    for cart_item in req.cart_items:
        if not cart_item.name.strip():
            raise ValidationError(f"Missing product name for item {cart_item.id}")
        if cart_item.quantity < 1:
            raise ValidationError(f"Invalid quantity for item {cart_item.id}")
        if cart_item.price < 0:
            raise ValidationError(f"Invalid price for item {cart_item.id}")
        items.append(
            LineItem(
                product_id=cart_item.id,
                name=cart_item.name,
                price=cart_item.price,
                quantity=cart_item.quantity,
            )
        )

    profile = ContactProfile(
        full_name=info.full_name.strip(),
        email=info.email.strip(),
        phone=info.phone.strip(),
        address=info.address.strip(),
        city=info.city.strip(),
        postal_code=(info.postal_code or "").strip() or DEFAULT_POSTAL_CODE,
    )
    return profile, items


class OrderSubmissionOrchestrator:
    def __init__(
        self,
        customers: CustomerResolver,
        orders: OrderWriter,
        stock: StockAdjuster,
        notifications: NotificationQueue,
        events: OrderEventPublisher | None = None,
    ):
        self.customers = customers
        self.orders = orders
        self.stock = stock
        self.notifications = notifications
        self.events = events

    async def submit(self, req: SubmitOrderRequest) -> SubmissionResult:
        steps: list[dict] = []

        # ── Step 1: 入力検証 ────────────────────────
        step = self._begin(steps, "Validate")
        try:
            profile, items = validate_submission(req)
        except ValidationError as e:
            self._fail(step, e)
            logger.info("Validation failed: %s", e.message)
            raise
        step["status"] = "COMPLETED"

        # ── Step 2: 顧客の検索/作成 ─────────────────
        step = self._begin(steps, "ResolveCustomer")
        try:
            customer_id = await self.customers.find_or_create(profile)
        except CheckoutError as e:
            self._fail(step, e)
            raise
        step["status"] = "COMPLETED"

        # ── Step 3: 注文の書き込み (トランザクション) ─
        step = self._begin(steps, "WriteOrder")
        try:
            receipt = await self.orders.create(customer_id, items, req.delivery_notes)
        except CheckoutError as e:
            # 顧客レコードはロールバックしない
            self._fail(step, e)
            raise
        step["status"] = "COMPLETED"

        degradations: list[PartialDegradation] = []

        # ── Step 4: 在庫の減算 (ベストエフォート) ───
        step = self._begin(steps, "AdjustStock")
        for item in items:
            try:
                found = await self.stock.decrement(item.product_id, item.quantity)
            except Exception as e:
                self._degrade(degradations, "AdjustStock", f"product:{item.product_id}", e)
                continue
            if not found:
                logger.warning("Stock update matched no product: %s", item.product_id)
        step["status"] = "FAILED" if degradations else "COMPLETED"

        # ── Step 5: イベント発行 ────────────────────
        if self.events is not None:
            step = self._begin(steps, "PublishOrderPlaced")
            try:
                await self.events.publish(
                    OrderPlaced(
                        order_id=receipt.order_id,
                        order_number=receipt.order_number,
                        customer_id=customer_id,
                        total_amount=receipt.total_amount,
                        item_count=receipt.item_count,
                        timestamp=datetime.now(timezone.utc),
                    )
                )
                step["status"] = "COMPLETED"
            except Exception as e:
                step["status"] = "FAILED"
                self._degrade(degradations, "PublishOrderPlaced", receipt.order_number, e)

        # ── Step 6: 通知メール (fire-and-forget) ────
        step = self._begin(steps, "DispatchNotifications")
        try:
            self.notifications.enqueue(
                OrderEmailContext(
                    order_number=receipt.order_number,
                    customer=profile,
                    items=items,
                    total_amount=receipt.total_amount,
                    order_date=datetime.now(timezone.utc),
                    delivery_notes=req.delivery_notes,
                )
            )
            step["status"] = "QUEUED"
        except Exception as e:
            step["status"] = "FAILED"
            self._degrade(degradations, "DispatchNotifications", receipt.order_number, e)

        logger.info(
            "Order processing completed: id=%s number=%s customer=%s total=%.2f items=%d",
            receipt.order_id,
            receipt.order_number,
            customer_id,
            receipt.total_amount,
            receipt.item_count,
        )
        return SubmissionResult(
            customer_id=customer_id,
            receipt=receipt,
            degradations=degradations,
            steps=steps,
        )

    @staticmethod
    def _begin(steps: list[dict], action: str) -> dict:
        steps.append(
            {
                "step": len(steps) + 1,
                "action": action,
                "status": "EXECUTING",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
        return steps[-1]

    @staticmethod
    def _fail(step: dict, error: Exception) -> None:
        step["status"] = "FAILED"
        step["error"] = str(error)

    @staticmethod
    def _degrade(degradations: list[PartialDegradation], step: str, target: str, error: Exception) -> None:
        degradation = PartialDegradation(step=step, target=target, error=str(error) or type(error).__name__)
        degradations.append(degradation)
        logger.warning("%s failed for %s (order stands): %s", step, target, degradation.error)
