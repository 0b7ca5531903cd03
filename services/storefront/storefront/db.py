"""
Storefront Service — データベース

テーブル定義は SQLAlchemy Core のメタデータで一度だけ宣言し、
create_all で作成する（PostgreSQL / SQLite どちらの DDL にも展開できる）。
実行時のクエリはすべて text() によるパラメータ化 SQL。

  customers ──< orders ──< order_items >── products
"""

import logging
from decimal import Decimal

from sqlalchemy import (
    Boolean,
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
    event,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("cod", "online")

metadata = MetaData()

customers = Table(
    "customers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("full_name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone", String(20), nullable=False, index=True),
    Column("address", Text, nullable=False),
    Column("city", String(100), nullable=False),
    Column("postal_code", String(20), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False, index=True),
    Column("price", Numeric(10, 2), nullable=False),
    Column("description", Text),
    Column("image", String(255)),
    # 同時注文で負になり得る（制約は付けない）
    Column("stock_quantity", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_number", String(50), nullable=False, unique=True),
    Column(
        "customer_id",
        Integer,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending", index=True),
    Column("payment_method", String(20), nullable=False, server_default="cod"),
    Column("delivery_notes", Text),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), index=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint(
        "status IN ({})".format(", ".join(f"'{s}'" for s in ORDER_STATUSES)),
        name="ck_orders_status",
    ),
    CheckConstraint(
        "payment_method IN ({})".format(", ".join(f"'{m}'" for m in PAYMENT_METHODS)),
        name="ck_orders_payment_method",
    ),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "order_id",
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True),
    Column("product_name", String(255), nullable=False),
    Column("product_price", Numeric(10, 2), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("subtotal", Numeric(10, 2), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
)

SAMPLE_PRODUCTS = [
    ("Premium Wireless Headphones", Decimal("199.99"),
     "High-quality wireless headphones with noise cancellation and 30-hour battery life.",
     "Premium_Wireless_Headphones.png", 50),
    ("Smart Fitness Watch", Decimal("299.99"),
     "Advanced fitness tracking with heart rate monitor, GPS, and smartphone connectivity.",
     "Smart_Fitness_Watch.png", 30),
    ("4K Webcam Pro", Decimal("149.99"),
     "Ultra HD webcam perfect for streaming, video calls, and content creation.",
     "4K_Webcam_Pro.png", 25),
    ("Mechanical Gaming Keyboard", Decimal("179.99"),
     "RGB backlit mechanical keyboard with premium switches for gaming enthusiasts.",
     "Mechanical_Gaming_Keyboard.png", 40),
    ("Wireless Charging Pad", Decimal("79.99"),
     "Fast wireless charging pad compatible with all Qi-enabled devices.",
     "Wireless_Charging_Pad.png", 60),
    ("Bluetooth Speaker Pro", Decimal("129.99"),
     "Portable Bluetooth speaker with 360° sound and waterproof design.",
     "Bluetooth_Speaker_Pro.png", 35),
]


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(database_url: str, pool_size: int = 10, pool_timeout: float = 60.0) -> AsyncEngine:
    """
    プロセス共有の接続プールを作る。

    SQLite は外部キー制約がデフォルト無効なので接続ごとに有効化する。
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=False)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=pool_size,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_schema(engine: AsyncEngine) -> None:
    """テーブルが無ければ作成する（既存テーブルには触れない）。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Schema created/verified: %s", ", ".join(metadata.tables))


async def seed_products(engine: AsyncEngine) -> int:
    """products が空のときだけサンプル商品を投入する。投入件数を返す。"""
    async with engine.begin() as conn:
        count = (await conn.execute(text("SELECT COUNT(*) FROM products"))).scalar_one()
        if count:
            logger.info("Products table already has %d rows", count)
            return 0
        await conn.execute(
            products.insert(),
            [
                {
                    "name": name,
                    "price": price,
                    "description": description,
                    "image": image,
                    "stock_quantity": stock,
                }
                for name, price, description, image, stock in SAMPLE_PRODUCTS
            ],
        )
    logger.info("Inserted %d sample products", len(SAMPLE_PRODUCTS))
    return len(SAMPLE_PRODUCTS)


async def check_connection(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.error("Database connection failed: %s", exc)
        return False
