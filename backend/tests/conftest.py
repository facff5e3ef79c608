"""
Pytest configuration and fixtures for the pharmacy store tests.

Storage-backed tests run against a throwaway SQLite file per test so the
conditional UPDATEs, rollbacks and concurrent sessions are exercised for real.
"""
import itertools
import os
import tempfile

# Set test environment before importing app modules
_TEST_DIR = tempfile.mkdtemp(prefix="pharmacy-store-tests-")
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["STALE_ORDER_SWEEP_ENABLED"] = "false"

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pharmacy_store.core.config import settings
from pharmacy_store.core.database import Base, build_engine_options
from pharmacy_store.models import Product

_sku_counter = itertools.count(1)


def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh database file with the full schema."""
    url = sqlite_url(tmp_path / "store.db")
    engine = create_async_engine(url, **build_engine_options(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return it (detached, attributes loaded)."""

    async def _make(**overrides) -> Product:
        data = {
            "sku": f"SKU-{next(_sku_counter):05d}",
            "name": "Doliprane 1000mg",
            "price": 2500,
            "stock": 10,
            "low_stock_threshold": 3,
            "is_active": True,
        }
        data.update(overrides)
        async with session_factory() as session:
            product = Product(**data)
            session.add(product)
            await session.commit()
            return product

    return _make


@pytest.fixture
def fetch_product(session_factory):
    """Read a product's committed state through a new session."""

    async def _fetch(product_id: int) -> Product:
        async with session_factory() as session:
            return await session.get(Product, product_id)

    return _fetch


@pytest.fixture
def customer() -> dict:
    return {
        "first_name": "Amina",
        "last_name": "Benali",
        "email": "Amina.Benali@example.com",
        "phone": "0555 12 34 56",
        "address": "12 rue Didouche Mourad",
        "city": "Alger",
        "region": "Alger",
        "postal_code": "16000",
    }


def _encode_token(role: str = "admin", email: str = "admin@pharmacie.dz", token_type: str = "access") -> str:
    return jwt.encode(
        {"sub": "1", "email": email, "role": role, "type": token_type},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


@pytest.fixture
def make_token():
    return _encode_token


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {_encode_token()}"}
