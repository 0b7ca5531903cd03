"""
Storefront Service — FastAPI エントリーポイント

チェックアウト画面から注文を受け付け、注文照会・商品一覧・ヘルスチェックを提供する。

接続プール・Redis クライアント・メール送信経路はプロセス単位のリソースとして
lifespan で生成し、各コンポーネントのコンストラクタに渡す。
リクエストごとの処理はセッションを async with で取得・返却する。

  POST  /api/submit-order                   注文受付 (オーケストレーター)
  GET   /api/order/{order_number}           注文照会
  PATCH /api/order/{order_number}/status    ステータス更新
  GET   /api/products                       商品一覧
  POST  /api/test-email                     メール設定の確認
  GET   /api/health                         DB / メールの疎通確認
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import db, queries
from .commands import CustomerResolver, OrderWriter, StockAdjuster, update_order_status
from .config import Settings, configure_logging
from .errors import CheckoutError, OrderNotFound, ValidationError
from .events import OrderEventPublisher, OrderStatusChanged
from .mailer import EmailTransport, build_transport
from .notifications import BackgroundNotificationQueue, NotificationDispatcher
from .orchestrator import OrderSubmissionOrchestrator
from .schemas import (
    OrderDetails,
    SubmitOrderRequest,
    SubmitOrderResponse,
    TestEmailRequest,
    UpdateStatusRequest,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    transport: EmailTransport | None = None,
    redis: aioredis.Redis | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = db.make_engine(settings.database_url, settings.db_pool_size, settings.db_pool_timeout)
        try:
            if settings.create_schema:
                await db.init_schema(engine)
            if settings.seed_products:
                await db.seed_products(engine)
        except Exception:
            await engine.dispose()
            raise
        await db.check_connection(engine)
        session_factory = db.make_session_factory(engine)

        redis_client = redis
        owns_redis = False
        if redis_client is None and settings.redis_url:
            redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
            owns_redis = True
        publisher = OrderEventPublisher(redis_client) if redis_client is not None else None

        mail_transport = transport or build_transport(settings)
        dispatcher = NotificationDispatcher(
            mail_transport,
            from_name=settings.email_from_name,
            from_address=settings.sender_address,
            business_address=settings.business_address,
        )
        notification_queue = BackgroundNotificationQueue(dispatcher)

        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.events = publisher
        app.state.dispatcher = dispatcher
        app.state.notifications = notification_queue
        app.state.orchestrator = OrderSubmissionOrchestrator(
            CustomerResolver(session_factory),
            OrderWriter(session_factory),
            StockAdjuster(session_factory),
            notification_queue,
            publisher,
        )
        logger.info("Storefront service started (email backend: %s)", settings.email_backend)
        yield

        await notification_queue.drain()
        if transport is None:
            await mail_transport.aclose()
        if owns_redis:
            await redis_client.aclose()
        await engine.dispose()

    app = FastAPI(title="Storefront Service", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CheckoutError)
    async def handle_checkout_error(request: Request, exc: CheckoutError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first["loc"] if part != "body")
            message = f"Invalid field {location}: {first['msg']}" if location else first["msg"]
        else:
            message = "Invalid request body"
        return _error(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Endpoint not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")


def _register_routes(app: FastAPI) -> None:
    # ── Command Endpoints ──────────────────────────

    @app.post("/api/submit-order", status_code=201, response_model=SubmitOrderResponse)
    async def submit_order(req: SubmitOrderRequest, request: Request):
        """注文受付。レスポンスはトランザクション (検証・顧客・注文) の結果だけを反映する。"""
        result = await request.app.state.orchestrator.submit(req)
        receipt = result.receipt
        return SubmitOrderResponse(
            order_details=OrderDetails(
                order_id=receipt.order_id,
                order_number=receipt.order_number,
                total_amount=float(receipt.total_amount),
                item_count=receipt.item_count,
            )
        )

    @app.patch("/api/order/{order_number}/status")
    async def change_order_status(order_number: str, req: UpdateStatusRequest, request: Request):
        """ステータス更新（状態遷移のルールに従う）"""
        change = await update_order_status(
            request.app.state.session_factory, order_number, req.status.strip().lower()
        )
        publisher = request.app.state.events
        if publisher is not None:
            try:
                await publisher.publish(
                    OrderStatusChanged(**change, timestamp=datetime.now(timezone.utc))
                )
            except Exception as e:
                logger.warning("PublishOrderStatusChanged failed for %s: %s", order_number, e)
        return {"success": True, **change}

    @app.post("/api/test-email")
    async def send_test_email(req: TestEmailRequest, request: Request):
        if not req.email or not req.email.strip():
            raise ValidationError("Email address is required")
        result = await request.app.state.dispatcher.send_test_email(req.email.strip())
        if not result.success:
            return _error(500, result.error or "Failed to send test email")
        return {
            "success": True,
            "message": "Test email sent successfully",
            "messageId": result.message_id,
            "recipient": result.recipient,
        }

    # ── Query Endpoints ────────────────────────────

    @app.get("/api/order/{order_number}")
    async def get_order(order_number: str, request: Request):
        async with request.app.state.session_factory() as session:
            order = await queries.get_order_by_number(session, order_number)
        if not order:
            raise OrderNotFound(order_number)
        return {"success": True, "order": order}

    @app.get("/api/products")
    async def get_products(request: Request):
        async with request.app.state.session_factory() as session:
            products = await queries.list_products(session)
        logger.info("Retrieved %d products", len(products))
        return {"success": True, "products": products}

    @app.get("/api/health")
    async def health(request: Request):
        db_ok = await db.check_connection(request.app.state.engine)
        email_ok = await request.app.state.dispatcher.transport.verify()
        return {
            "status": "OK",
            "service": "storefront-service",
            "database": "Connected" if db_ok else "Disconnected",
            "email": "Connected" if email_ok else "Disconnected",
            "services": {"database": db_ok, "email": email_ok},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


app = create_app()
