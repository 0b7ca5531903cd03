import json
import sqlite3

import pytest
from fastapi.testclient import TestClient

from storefront.config import Settings
from storefront.db import init_schema, make_engine, make_session_factory, seed_products
from storefront.mailer import EmailTransport, OutgoingEmail


class RecordingTransport(EmailTransport):
    """送信したメールをメモリに記録する。fail_for に入れた宛先は送信失敗にする。"""

    def __init__(self):
        self.sent: list[OutgoingEmail] = []
        self.fail_for: set[str] = set()
        self.healthy = True

    async def send(self, message: OutgoingEmail) -> str:
        if message.to in self.fail_for:
            raise ConnectionError(f"Connection refused while sending to {message.to}")
        self.sent.append(message)
        return f"<msg-{len(self.sent)}@test>"

    async def verify(self) -> bool:
        return self.healthy

    def recipients(self) -> list[str]:
        return [message.to for message in self.sent]


class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, dict]] = []
        self.fail = False

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("Error connecting to localhost:6379")
        self.published.append((channel, json.loads(message)))
        return 0

    async def aclose(self) -> None:
        return None


BUSINESS_EMAIL = "owner@techstore.test"


def make_submission(**overrides) -> dict:
    body = {
        "customerInfo": {
            "fullName": "Ada Lovelace",
            "email": "a@b.com",
            "phone": "+1 555 0100",
            "address": "12 Analytical Street",
            "city": "London",
            "postalCode": "N1 9GU",
        },
        "cartItems": [
            {"id": 1, "name": "Headphones", "price": 199.99, "quantity": 2},
        ],
        "deliveryNotes": "Leave at the front desk",
    }
    body.update(overrides)
    return body


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "storefront.db"


@pytest.fixture
def database_url(db_path):
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture
def query_db(db_path):
    """テスト側から SQLite ファイルを直接読むためのヘルパー。"""

    def _query(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    return _query


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        redis_url="",
        seed_products=True,
        email_backend="console",
        email_from_address="orders@techstore.test",
        business_email=BUSINESS_EMAIL,
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(settings, transport, fake_redis):
    from storefront.main import create_app

    return create_app(settings, transport=transport, redis=fake_redis)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def engine(database_url):
    engine = make_engine(database_url)
    await init_schema(engine)
    await seed_products(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)
