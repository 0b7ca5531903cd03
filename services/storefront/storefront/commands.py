"""
Storefront Service — コマンドハンドラ (Write 側)

注文受付で状態を変更する操作をまとめる。

  CustomerResolver  メールアドレスで顧客を検索し、無ければ作成する
  OrderWriter       注文ヘッダと明細を 1 トランザクションで書き込む
  StockAdjuster     確定済み注文の在庫を商品ごとに減算する（トランザクション外）

各コンポーネントは共有の接続プール (session factory) をコンストラクタで受け取り、
作業単位ごとに async with でセッションを取得・返却する。
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import DateTime, Numeric, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import ORDER_STATUSES
from .errors import InvalidStatusTransition, OrderNotFound, ValidationError, translate_db_error
from .models import ContactProfile, LineItem, OrderReceipt, order_total
from .order_number import generate_order_number

logger = logging.getLogger(__name__)

MONEY = Numeric(10, 2)
TIMESTAMP = DateTime(timezone=True)

# 接続拒否などドライバが SQLAlchemy で包まずに投げる OSError も分類対象にする
DB_ERRORS = (SQLAlchemyError, OSError)

# 状態遷移:
#   pending → confirmed → shipped → delivered
#   pending / confirmed → cancelled
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

INSERT_CUSTOMER = text("""
    INSERT INTO customers
        (full_name, email, phone, address, city, postal_code, created_at, updated_at)
    VALUES
        (:full_name, :email, :phone, :address, :city, :postal_code, :now, :now)
    RETURNING id
""").bindparams(bindparam("now", type_=TIMESTAMP))

INSERT_ORDER = text("""
    INSERT INTO orders
        (order_number, customer_id, total_amount, status, payment_method,
         delivery_notes, created_at, updated_at)
    VALUES
        (:order_number, :customer_id, :total_amount, 'pending', 'cod',
         :delivery_notes, :now, :now)
    RETURNING id
""").bindparams(
    bindparam("total_amount", type_=MONEY),
    bindparam("now", type_=TIMESTAMP),
)

INSERT_ORDER_ITEM = text("""
    INSERT INTO order_items
        (order_id, product_id, product_name, product_price, quantity, subtotal, created_at)
    VALUES
        (:order_id, :product_id, :product_name, :product_price, :quantity, :subtotal, :now)
""").bindparams(
    bindparam("product_price", type_=MONEY),
    bindparam("subtotal", type_=MONEY),
    bindparam("now", type_=TIMESTAMP),
)


class CustomerResolver:
    """顧客の find-or-create。既存顧客の情報は更新しない。"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def find_by_email(self, email: str) -> dict | None:
        async with self._session_factory() as session:
            result = await session.execute(
                text("SELECT * FROM customers WHERE email = :email"),
                {"email": email},
            )
            row = result.mappings().first()
            return dict(row) if row else None

    async def create(self, profile: ContactProfile) -> int:
        now = datetime.now(timezone.utc)
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    INSERT_CUSTOMER,
                    {**profile.model_dump(), "now": now},
                )
                customer_id = result.scalar_one()
        except DB_ERRORS as exc:
            # 同じメールの同時登録は UNIQUE 制約で ConflictError になる
            logger.error("Error creating customer %s: %s", profile.email, exc)
            raise translate_db_error(exc) from exc

        logger.info("Customer created with ID: %s", customer_id)
        return customer_id

    async def find_or_create(self, profile: ContactProfile) -> int:
        try:
            existing = await self.find_by_email(profile.email)
        except DB_ERRORS as exc:
            raise translate_db_error(exc) from exc
        if existing:
            logger.info("Found existing customer: %s", existing["id"])
            return existing["id"]
        return await self.create(profile)


class OrderWriter:
    """
    注文ヘッダと明細をアトミックに書き込む。

    ヘッダ INSERT と全明細 INSERT は同じトランザクションで実行し、
    どこかで失敗すればすべてロールバックされる（部分的な注文は残らない）。
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        order_number_factory: Callable[[], str] = generate_order_number,
    ):
        self._session_factory = session_factory
        self._order_number_factory = order_number_factory

    async def create(
        self,
        customer_id: int,
        items: list[LineItem],
        delivery_notes: str | None = None,
    ) -> OrderReceipt:
        if not items:
            raise ValidationError("Missing required order data")

        order_number = self._order_number_factory()
        total_amount = order_total(items)
        now = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    INSERT_ORDER,
                    {
                        "order_number": order_number,
                        "customer_id": customer_id,
                        "total_amount": total_amount,
                        "delivery_notes": delivery_notes or None,
                        "now": now,
                    },
                )
                order_id = result.scalar_one()
                logger.info("Order created with ID: %s, Number: %s", order_id, order_number)

                for item in items:
                    await session.execute(
                        INSERT_ORDER_ITEM,
                        {
                            "order_id": order_id,
                            "product_id": item.product_id,
                            "product_name": item.name,
                            "product_price": item.unit_price,
                            "quantity": item.quantity,
                            "subtotal": item.subtotal,
                            "now": now,
                        },
                    )
        except DB_ERRORS as exc:
            logger.error("Error creating order %s: %s", order_number, exc)
            raise translate_db_error(exc) from exc

        logger.info("%d order items inserted for %s", len(items), order_number)
        return OrderReceipt(
            order_id=order_id,
            order_number=order_number,
            total_amount=total_amount,
            item_count=len(items),
        )


class StockAdjuster:
    """
    在庫の相対減算。

    stock = stock - qty の 1 文で更新するため、同時減算で更新が失われることはない。
    ただし在庫不足のチェックはしない（同時注文で負の在庫になり得る）。
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def decrement(self, product_id: int, quantity: int) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    text("""
                        UPDATE products
                        SET stock_quantity = stock_quantity - :qty, updated_at = :now
                        WHERE id = :id
                    """).bindparams(bindparam("now", type_=TIMESTAMP)),
                    {"qty": quantity, "id": product_id, "now": datetime.now(timezone.utc)},
                )
                affected = result.rowcount
        except DB_ERRORS as exc:
            raise translate_db_error(exc) from exc
        return affected > 0


async def update_order_status(
    session_factory: sessionmaker,
    order_number: str,
    new_status: str,
) -> dict:
    """
    注文ステータスを更新する。

    現在のステータスを条件に含めて UPDATE するため、
    読み取り後に他のリクエストが先に更新した場合は 0 行となり競合として扱う。
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}")

    try:
        async with session_factory() as session, session.begin():
            result = await session.execute(
                text("SELECT status FROM orders WHERE order_number = :n"),
                {"n": order_number},
            )
            current = result.scalar_one_or_none()
            if current is None:
                raise OrderNotFound(order_number)
            if new_status not in STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransition(
                    f"Cannot change order status from {current} to {new_status}"
                )

            result = await session.execute(
                text("""
                    UPDATE orders
                    SET status = :new, updated_at = :now
                    WHERE order_number = :n AND status = :current
                """).bindparams(bindparam("now", type_=TIMESTAMP)),
                {
                    "new": new_status,
                    "current": current,
                    "n": order_number,
                    "now": datetime.now(timezone.utc),
                },
            )
            if result.rowcount == 0:
                raise InvalidStatusTransition(f"Order {order_number} was modified concurrently")
    except DB_ERRORS as exc:
        raise translate_db_error(exc) from exc

    logger.info("Order %s status updated: %s -> %s", order_number, current, new_status)
    return {"order_number": order_number, "previous_status": current, "status": new_status}
