"""
Storefront Service — エラー分類

注文受付で発生するエラーを HTTP ステータスと再試行可否つきで分類する。

  ValidationError      入力不備。副作用が起きる前に拒否する        → 400
  ConflictError        一意制約違反 (注文番号・顧客メールの競合)   → 409 (再送可)
  ReferentialError     存在しない商品を参照した明細                → 400
  TransientInfraError  DB / メール基盤への接続断・タイムアウト     → 500 (再送可)
  PartialDegradation   注文確定後の在庫減算・通知・イベント発行の失敗。
                       ログに残すだけで、レスポンスには影響しない。
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

# PostgreSQL の SQLSTATE
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class CheckoutError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str = "Failed to process order. Please try again."):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    status_code = 400


class ConflictError(CheckoutError):
    status_code = 409
    retryable = True


class InvalidStatusTransition(ConflictError):
    retryable = False


class ReferentialError(CheckoutError):
    status_code = 400


class TransientInfraError(CheckoutError):
    status_code = 500
    retryable = True


class OrderNotFound(CheckoutError):
    status_code = 404

    def __init__(self, order_number: str):
        super().__init__("Order not found")
        self.order_number = order_number


class PartialDegradation(BaseModel):
    """注文確定後に失敗したステップの記録 (例外としては投げない)。"""

    step: str
    target: str
    error: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def translate_db_error(exc: Exception) -> CheckoutError:
    """
    SQLAlchemy の例外をエラー分類に変換する。

    PostgreSQL (asyncpg) は SQLSTATE で、SQLite はメッセージで判定する。
    """
    if isinstance(exc, CheckoutError):
        return exc

    if isinstance(exc, IntegrityError):
        code = _sqlstate(exc)
        text = str(exc.orig).lower()
        if code == UNIQUE_VIOLATION or "unique" in text or "duplicate" in text:
            return ConflictError("Duplicate order detected")
        if code == FOREIGN_KEY_VIOLATION or "foreign key" in text:
            return ReferentialError("Invalid product reference")
        return CheckoutError(f"Database error: {exc.orig}")

    if isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError, OSError)):
        return TransientInfraError("Database connection failed. Please try again later.")

    if isinstance(exc, DBAPIError):
        return CheckoutError(f"Database error: {exc.orig}")

    return CheckoutError(f"Order processing failed: {exc or 'Unknown error'}. Please try again.")
