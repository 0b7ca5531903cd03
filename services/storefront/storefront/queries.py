"""
Storefront Service — クエリハンドラ (Read 側)

注文照会と商品一覧。金額は Decimal に揃えてから float で返す。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import to_money


def _iso(value) -> str | None:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


async def get_order_by_number(session: AsyncSession, order_number: str) -> dict | None:
    """注文ヘッダ + 顧客の連絡先 + 明細を返す。"""
    result = await session.execute(
        text("""
            SELECT o.*, c.full_name, c.email, c.phone, c.address, c.city, c.postal_code
            FROM orders o
            JOIN customers c ON o.customer_id = c.id
            WHERE o.order_number = :order_number
        """),
        {"order_number": order_number},
    )
    row = result.fetchone()
    if not row:
        return None

    items = await session.execute(
        text("SELECT * FROM order_items WHERE order_id = :order_id ORDER BY id"),
        {"order_id": row.id},
    )
    return {
        "id": row.id,
        "order_number": row.order_number,
        "customer_id": row.customer_id,
        "total_amount": float(to_money(row.total_amount)),
        "status": row.status,
        "payment_method": row.payment_method,
        "delivery_notes": row.delivery_notes,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
        "full_name": row.full_name,
        "email": row.email,
        "phone": row.phone,
        "address": row.address,
        "city": row.city,
        "postal_code": row.postal_code,
        "items": [
            {
                "id": item.id,
                "order_id": item.order_id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_price": float(to_money(item.product_price)),
                "quantity": item.quantity,
                "subtotal": float(to_money(item.subtotal)),
                "created_at": _iso(item.created_at),
            }
            for item in items.fetchall()
        ],
    }


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM products WHERE is_active = :active ORDER BY id"),
        {"active": True},
    )
    return [
        {
            "id": row.id,
            "name": row.name,
            "price": float(to_money(row.price)),
            "description": row.description,
            "image": row.image,
            "stock_quantity": row.stock_quantity,
            "is_active": bool(row.is_active),
        }
        for row in result.fetchall()
    ]
