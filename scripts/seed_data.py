"""Seed demo data: two stores, a small catalog, pending orders and a return."""
import asyncio
from datetime import date
from decimal import Decimal
import uuid

from app.database import async_session_factory
from app.models import (
    Store, Product, Order, OrderItem, ReturnRequest, ReturnReason,
)


async def seed():
    """Seed initial data."""
    async with async_session_factory() as db:
        try:
            print("Seeding data...")

            # 1. Stores
            print("Creating stores...")
            north = Store(id=uuid.uuid4(), name="North Street Boutique", location="North Street 12")
            harbor = Store(id=uuid.uuid4(), name="Harbor Outlet", location="Pier 4")
            db.add_all([north, harbor])

            # 2. Catalog
            print("Creating products...")
            products = [
                Product(barcode="8901000000011", store_id=north.id, style_name="Linen Shirt",
                        size="M", color="White", inventory=12, cost_price=Decimal("20.00")),
                Product(barcode="8901000000028", store_id=north.id, style_name="Linen Shirt",
                        size="L", color="White", inventory=8, cost_price=Decimal("20.00")),
                Product(barcode="8901000000035", store_id=harbor.id, style_name="Canvas Tote",
                        color="Navy", inventory=30, cost_price=Decimal("12.50")),
            ]
            db.add_all(products)

            # 3. Marketplace demand
            print("Creating orders...")
            for n, (barcode, qty) in enumerate(
                [("8901000000011", 2), ("8901000000028", 1), ("8901000000035", 3)], start=1
            ):
                order = Order(
                    id=uuid.uuid4(),
                    platform="marketplace",
                    platform_order_id=f"MP-{1000 + n}",
                    order_date=date.today(),
                )
                db.add(order)
                db.add(OrderItem(order_id=order.id, barcode=barcode, quantity=qty))

            # 4. A return headed back to the harbor store
            print("Creating return request...")
            db.add(ReturnRequest(
                store_id=harbor.id,
                store_name=harbor.name,
                barcode="8901000000035",
                style_name="Canvas Tote",
                quantity=1,
                reason=ReturnReason.DAMAGED.value,
                return_amount=Decimal("12.50"),
            ))

            await db.commit()
            print("Seed complete!")
        except Exception:
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(seed())
