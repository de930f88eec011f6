# tests/conftest.py
import os
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator

# settings are cached on first import, so configure them before cannastock loads
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["MOVEMENT_RETRY_BASE_DELAY_MS"] = "0"
os.environ["MOVEMENT_RETRY_MAX_DELAY_MS"] = "0"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from cannastock.db import Base  # noqa: E402
from cannastock.models import Location, Product, TransactionDetail, TransactionType  # noqa: E402


# one file database per test; NullPool so every session gets its own connection
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'cannastock.db'}",
        poolclass=NullPool,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


@pytest_asyncio.fixture
async def product(session: AsyncSession) -> Product:
    item = Product(
        sku="FLW-101",
        name="Durban Poison 3.5g",
        cost_price=Decimal("45.00"),
        selling_price=Decimal("120.00"),
        reorder_level=Decimal("5"),
        thc_percentage=Decimal("18.50"),
        cbd_percentage=Decimal("0.30"),
        is_active=True,
    )
    session.add(item)
    await session.commit()
    return item


@pytest_asyncio.fixture
async def store(session: AsyncSession) -> Location:
    location = Location(site_id=1, code="STORE-01", name="Retail floor")
    session.add(location)
    await session.commit()
    return location


@pytest_asyncio.fixture
async def vault(session: AsyncSession) -> Location:
    location = Location(site_id=1, code="VAULT-01", name="Vault")
    session.add(location)
    await session.commit()
    return location


@pytest.fixture
def add_lines(session: AsyncSession):
    """Writes detail lines for a transaction header, one per quantity."""

    async def _add(
        transaction_type: TransactionType,
        header_id: int,
        product: Product,
        *quantities,
        batch_number=None,
        created_by="cashier-1",
    ) -> list[TransactionDetail]:
        lines = [
            TransactionDetail(
                header_id=header_id,
                transaction_type=transaction_type,
                product_id=product.id,
                product_sku=product.sku,
                product_name=product.name,
                quantity=Decimal(str(qty)),
                unit_price=Decimal("120.00"),
                line_total=Decimal("120.00") * abs(Decimal(str(qty))),
                batch_number=batch_number,
                weight_grams=Decimal("3.5"),
                created_at=datetime(2025, 12, 1),
                created_by=created_by,
            )
            for qty in quantities
        ]
        session.add_all(lines)
        await session.commit()
        return lines

    return _add
