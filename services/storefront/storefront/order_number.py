"""
Storefront Service — 注文番号の生成

形式: ORD + エポックミリ秒の下8桁 + 3桁の乱数 (例: ORD84512034007)

同一ミリ秒帯で衝突する可能性はある。最終的な一意性は
orders.order_number の UNIQUE 制約が保証し、衝突は ConflictError (409) になる。
"""

import random
import time


def generate_order_number(now_ms: int | None = None, rng: random.Random | None = None) -> str:
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = (rng or random).randint(0, 999)
    return f"ORD{now_ms % 100_000_000:08d}{suffix:03d}"
