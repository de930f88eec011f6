import asyncio
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy import select
from cannastock.db import AsyncSessionLocal
from cannastock.models import Product, Location


async def run():
    async with AsyncSessionLocal() as session:
        await seed_locations(session)
        await seed_products(session)
        await session.commit()


async def seed_products(session):
    expiry = date.today() + timedelta(days=180)
    sample = [
        ("FLW-101", "Durban Poison 3.5g", "Flower", "45.00", "120.00", "20", "18.50", "0.30"),
        ("FLW-201", "Northern Lights 3.5g", "Flower", "48.00", "130.00", "20", "21.00", "0.10"),
        ("FLW-301", "Blue Dream 7g", "Flower", "80.00", "220.00", "10", "19.00", "0.20"),
        ("OIL-401", "CBD Oil 30ml", "Oils", "150.00", "390.00", "5", "0.20", "10.00"),
        ("PRE-101", "Pre-roll 1g", "Pre-rolls", "12.00", "35.00", "50", "17.00", "0.50"),
    ]
    for sku, name, category, cost, price, reorder, thc, cbd in sample:
        res = await session.execute(select(Product).where(Product.sku == sku))
        if res.scalar_one_or_none():
            continue
        session.add(
            Product(
                sku=sku,
                name=name,
                category=category,
                cost_price=Decimal(cost),
                selling_price=Decimal(price),
                reorder_level=Decimal(reorder),
                expiry_date=expiry,
                thc_percentage=Decimal(thc),
                cbd_percentage=Decimal(cbd),
                is_active=True,
            )
        )


async def seed_locations(session):
    locations = [
        (1, "STORE-01", "Retail floor"),
        (1, "VAULT-01", "Vault"),
        (1, "QUAR-01", "Quarantine"),
        (2, "STORE-02", "Second store"),
    ]
    for site_id, code, name in locations:
        res = await session.execute(select(Location).where(Location.code == code))
        if res.scalar_one_or_none():
            continue
        session.add(Location(site_id=site_id, code=code, name=name))


if __name__ == "__main__":
    asyncio.run(run())
