import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

from datetime import datetime, timedelta, timezone

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlmodel import SQLModel

from singlepiece.auth.utils import create_access_token
from singlepiece.db.connection import build_engine, build_session_factory
from singlepiece.main import create_app
from singlepiece.notifications.services import Notifier
from singlepiece.schema.full_schema import Orders, Payment, Product

url_prefix = "/api/v1"


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'singlepiece_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_clock():
    return FakeClock


@pytest.fixture
def make_product(session_factory):
    async def _make(item_key: str, price: int = 1000, **fields) -> Product:
        async with session_factory() as session:
            product = Product(item_key=item_key, name=fields.pop("name", item_key.title()), price=price, **fields)
            session.add(product)
            await session.commit()
            return product
    return _make


@pytest.fixture
def load_product(session_factory):
    async def _load(item_key: str) -> Product:
        async with session_factory() as session:
            res = await session.execute(select(Product).where(Product.item_key == item_key))
            return res.scalar_one()
    return _load


@pytest.fixture
def load_entry(session_factory):
    async def _load(order_ref: str):
        async with session_factory() as session:
            res = await session.execute(
                select(Orders, Payment).join(Payment, Payment.order_id == Orders.id).where(Orders.order_ref == order_ref)
            )
            row = res.first()
            return (row[0], row[1]) if row else None
    return _load


@pytest.fixture
def auth_headers():
    def _headers(buyer_id: str, roles=None):
        return {"Authorization": f"Bearer {create_access_token(buyer_id, roles)}"}
    return _headers


@pytest.fixture
def app(session_factory, clock):
    return create_app(session_factory, start_sweeper=False, clock=clock, notifier=Notifier(webhook_url=""))


@pytest.fixture
async def ac_client(app):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
