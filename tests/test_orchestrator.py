"""オーケストレーターのステップ制御を、各コンポーネントのフェイクで検証する。"""

from decimal import Decimal

import pytest

from conftest import FakeRedis, make_submission
from storefront.errors import ConflictError, TransientInfraError, ValidationError
from storefront.events import OrderEventPublisher
from storefront.models import OrderReceipt, order_total
from storefront.notifications import NotificationQueue
from storefront.orchestrator import OrderSubmissionOrchestrator, validate_submission
from storefront.schemas import SubmitOrderRequest

pytestmark = pytest.mark.anyio


class FakeCustomers:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def find_or_create(self, profile):
        self.calls.append(profile)
        if self.error:
            raise self.error
        return 7


class FakeOrders:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def create(self, customer_id, items, delivery_notes=None):
        self.calls.append((customer_id, items, delivery_notes))
        if self.error:
            raise self.error
        return OrderReceipt(
            order_id=11,
            order_number="ORD00000001123",
            total_amount=order_total(items),
            item_count=len(items),
        )


class FakeStock:
    def __init__(self, failing: set[int] = frozenset()):
        self.failing = failing
        self.calls = []

    async def decrement(self, product_id, quantity):
        self.calls.append((product_id, quantity))
        if product_id in self.failing:
            raise TransientInfraError("Database connection failed. Please try again later.")
        return True


class FakeQueue(NotificationQueue):
    def __init__(self):
        self.enqueued = []

    def enqueue(self, context):
        self.enqueued.append(context)


def build(customers=None, orders=None, stock=None, events=None):
    queue = FakeQueue()
    orchestrator = OrderSubmissionOrchestrator(
        customers or FakeCustomers(),
        orders or FakeOrders(),
        stock or FakeStock(),
        queue,
        events,
    )
    return orchestrator, queue


def request(**overrides) -> SubmitOrderRequest:
    return SubmitOrderRequest.model_validate(make_submission(**overrides))


class TestValidation:
    def test_postal_code_defaults_when_missing(self):
        body = make_submission()
        del body["customerInfo"]["postalCode"]

        contact, items = validate_submission(SubmitOrderRequest.model_validate(body))

        assert contact.postal_code == "00000"
        assert items[0].subtotal == Decimal("399.98")

    @pytest.mark.parametrize("field", ["fullName", "email", "phone", "address", "city"])
    def test_blank_contact_field_is_rejected(self, field):
        body = make_submission()
        body["customerInfo"][field] = "  "

        with pytest.raises(ValidationError, match=field):
            validate_submission(SubmitOrderRequest.model_validate(body))

    def test_zero_quantity_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_submission(
                request(cartItems=[{"id": 1, "name": "Headphones", "price": 1, "quantity": 0}])
            )

    def test_negative_price_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_submission(
                request(cartItems=[{"id": 1, "name": "Headphones", "price": -1, "quantity": 1}])
            )


class TestSubmit:
    async def test_happy_path_runs_every_step(self):
        events = FakeRedis()
        orchestrator, queue = build(events=OrderEventPublisher(events))

        result = await orchestrator.submit(request())

        assert result.customer_id == 7
        assert result.receipt.total_amount == Decimal("399.98")
        assert result.degradations == []
        assert [step["action"] for step in result.steps] == [
            "Validate",
            "ResolveCustomer",
            "WriteOrder",
            "AdjustStock",
            "PublishOrderPlaced",
            "DispatchNotifications",
        ]
        assert len(queue.enqueued) == 1
        assert queue.enqueued[0].customer.email == "a@b.com"
        channel, event = events.published[0]
        assert channel == "order_events"
        assert event["event_type"] == "OrderPlaced"
        assert event["data"]["order_number"] == "ORD00000001123"

    async def test_empty_cart_has_no_side_effects(self):
        customers, orders, stock = FakeCustomers(), FakeOrders(), FakeStock()
        orchestrator, queue = build(customers, orders, stock)

        with pytest.raises(ValidationError):
            await orchestrator.submit(request(cartItems=[]))

        assert customers.calls == []
        assert orders.calls == []
        assert stock.calls == []
        assert queue.enqueued == []

    async def test_customer_failure_aborts_before_order(self):
        orders = FakeOrders()
        orchestrator, queue = build(customers=FakeCustomers(ConflictError()), orders=orders)

        with pytest.raises(ConflictError):
            await orchestrator.submit(request())

        assert orders.calls == []
        assert queue.enqueued == []

    async def test_order_failure_skips_stock_and_notifications(self):
        stock = FakeStock()
        orchestrator, queue = build(orders=FakeOrders(ConflictError()), stock=stock)

        with pytest.raises(ConflictError):
            await orchestrator.submit(request())

        assert stock.calls == []
        assert queue.enqueued == []

    async def test_stock_failure_does_not_stop_later_items(self):
        stock = FakeStock(failing={1})
        orchestrator, queue = build(stock=stock)
        cart = [
            {"id": 1, "name": "Headphones", "price": 199.99, "quantity": 1},
            {"id": 2, "name": "Watch", "price": 299.99, "quantity": 1},
        ]

        result = await orchestrator.submit(request(cartItems=cart))

        assert stock.calls == [(1, 1), (2, 1)]
        assert [d.target for d in result.degradations] == ["product:1"]
        assert result.receipt.order_number == "ORD00000001123"
        assert len(queue.enqueued) == 1

    async def test_event_publish_failure_is_degradation(self):
        events = FakeRedis()
        events.fail = True
        orchestrator, queue = build(events=OrderEventPublisher(events))

        result = await orchestrator.submit(request())

        assert [d.step for d in result.degradations] == ["PublishOrderPlaced"]
        assert len(queue.enqueued) == 1
