"""
Storefront Service — イベント定義と発行

注文で発生した事実(イベント)を Redis Pub/Sub の order_events チャネルに流す。
イベントは過去形で命名し、不変(immutable)として扱う。

注意: Redis Pub/Sub は fire-and-forget 方式。購読者がいなければイベントは失われ、
再送もしない。発行の失敗は注文の成否に影響させない。
"""

import json
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from pydantic import BaseModel

ORDER_EVENTS_CHANNEL = "order_events"


class OrderPlaced(BaseModel):
    """注文が確定した（トランザクションのコミット後）"""
    order_id: int
    order_number: str
    customer_id: int
    total_amount: Decimal
    item_count: int
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文ステータスが変更された"""
    order_number: str
    previous_status: str
    status: str
    timestamp: datetime


class OrderEventPublisher:
    def __init__(self, redis: aioredis.Redis, channel: str = ORDER_EVENTS_CHANNEL):
        self.redis = redis
        self.channel = channel

    async def publish(self, event: BaseModel) -> None:
        await self.redis.publish(
            self.channel,
            json.dumps({
                "event_type": type(event).__name__,
                "data": event.model_dump(mode="json"),
            }),
        )
