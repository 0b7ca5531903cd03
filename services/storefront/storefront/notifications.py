"""
Storefront Service — 注文通知の送信

1 件の注文につき 2 通のメールを送る。

  顧客向け     注文確認 (customer.email 宛)
  事業者向け   新規注文アラート (BUSINESS_EMAIL 宛)

NotificationDispatcher は送信の失敗を DeliveryResult(success=False) に変換し、
境界の外へ例外を投げない。片方が失敗してももう片方は必ず送信を試みる。

NotificationQueue は「レスポンスを待たせずに通知を流す」ための差し替え口。
現在の実装は asyncio タスクで投げっぱなし(fire-and-forget)にするだけで、
再送やデッドレターは持たない。永続キューに置き換える場合はここを実装する。
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel

from .mailer import EmailTransport, OutgoingEmail
from .models import OrderEmailContext
from .templates import BusinessNotificationTemplate, CustomerConfirmationTemplate, TestEmailTemplate

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    success: bool
    message_id: str | None = None
    recipient: str | None = None
    error: str | None = None


class OrderEmailResults(BaseModel):
    customer: DeliveryResult
    business: DeliveryResult
    success: bool


class NotificationDispatcher:
    def __init__(
        self,
        transport: EmailTransport,
        from_name: str,
        from_address: str,
        business_address: str,
    ):
        self.transport = transport
        self.from_name = from_name
        self.from_address = from_address
        self.business_address = business_address

    async def _deliver(self, to: str, rendered: dict, from_name: str | None = None) -> DeliveryResult:
        try:
            if not to:
                raise ValueError("Recipient address is not configured")
            message = OutgoingEmail(
                to=to,
                from_name=from_name or self.from_name,
                from_address=self.from_address,
                **rendered,
            )
            message_id = await self.transport.send(message)
        except Exception as exc:
            return DeliveryResult(success=False, recipient=to or None, error=str(exc) or type(exc).__name__)
        return DeliveryResult(success=True, message_id=message_id, recipient=to)

    async def send_customer_confirmation(self, context: OrderEmailContext) -> DeliveryResult:
        result = await self._deliver(
            context.customer.email,
            CustomerConfirmationTemplate.render(context),
        )
        if result.success:
            logger.info("Customer confirmation sent to %s (id=%s)", result.recipient, result.message_id)
        else:
            logger.error("Failed to send customer confirmation for %s: %s", context.order_number, result.error)
        return result

    async def send_business_notification(self, context: OrderEmailContext) -> DeliveryResult:
        result = await self._deliver(
            self.business_address,
            BusinessNotificationTemplate.render(context),
            from_name=f"{self.from_name} System",
        )
        if result.success:
            logger.info("Business notification sent to %s (id=%s)", result.recipient, result.message_id)
        else:
            logger.error("Failed to send business notification for %s: %s", context.order_number, result.error)
        return result

    async def send_order_emails(self, context: OrderEmailContext) -> OrderEmailResults:
        """2 通とも送信を試み、両方成功したときだけ success=True を返す。"""
        logger.info("Sending order emails for %s", context.order_number)
        customer = await self.send_customer_confirmation(context)
        business = await self.send_business_notification(context)
        return OrderEmailResults(
            customer=customer,
            business=business,
            success=customer.success and business.success,
        )

    async def send_test_email(self, recipient: str) -> DeliveryResult:
        result = await self._deliver(recipient, TestEmailTemplate.render(recipient))
        if not result.success:
            logger.error("Failed to send test email to %s: %s", recipient, result.error)
        return result


class NotificationQueue(ABC):
    @abstractmethod
    def enqueue(self, context: OrderEmailContext) -> None:
        """通知を登録して即座に戻る。送信結果は呼び出し元へ返さない。"""

    async def drain(self) -> None:
        return None


class BackgroundNotificationQueue(NotificationQueue):
    """実行中のイベントループ上のタスクとして送信する。"""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        # タスクが GC されないよう完了まで参照を保持する
        self._tasks: set[asyncio.Task] = set()

    def enqueue(self, context: OrderEmailContext) -> None:
        task = asyncio.create_task(
            self.dispatcher.send_order_emails(context),
            name=f"order-emails-{context.order_number}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Email dispatch cancelled: %s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Email sending failed: %s", exc, exc_info=exc)
            return
        results = task.result()
        if results.success:
            logger.info("All email notifications sent successfully")
        else:
            logger.warning("Some email notifications failed: %s", results.model_dump())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """シャットダウン時に送信中のタスクの完了を待つ。"""
        if self._tasks:
            logger.info("Waiting for %d pending email dispatches", self.pending)
            await asyncio.gather(*self._tasks, return_exceptions=True)
