"""
Storefront Service — スキーマ初期化スクリプト

  $ storefront-setup-db

customers / orders / order_items / products を作成し、
products が空ならサンプル商品を投入する。
"""

import asyncio
import logging
import sys

from . import db
from .config import Settings, configure_logging

logger = logging.getLogger(__name__)


async def setup_database(settings: Settings) -> None:
    engine = db.make_engine(settings.database_url, settings.db_pool_size, settings.db_pool_timeout)
    try:
        await db.init_schema(engine)
        await db.seed_products(engine)
    finally:
        await engine.dispose()


def main() -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        asyncio.run(setup_database(settings))
    except Exception:
        logger.exception("Database setup failed (check DATABASE_URL and that the server is running)")
        return 1
    logger.info("Database setup completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
