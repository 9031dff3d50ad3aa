"""
Seed script: creates organizations, suppliers and catalog parts for local runs.
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid
from decimal import Decimal

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from quotedesk.database import AsyncSessionLocal, init_db, close_db
from quotedesk.models.organization import Organization
from quotedesk.models.supplier import Supplier
from quotedesk.models.part import Part

# ---------- Fixed UUIDs ----------

ORG_NORTH_ID = uuid.UUID("a0000000-0000-0000-0000-000000000001")
ORG_SOUTH_ID = uuid.UUID("b0000000-0000-0000-0000-000000000002")

SUPPLIER_ALPHA_ID = uuid.UUID("e0000000-0000-0000-0000-000000000001")
SUPPLIER_BETA_ID = uuid.UUID("e0000000-0000-0000-0000-000000000002")
SUPPLIER_GAMMA_ID = uuid.UUID("e0000000-0000-0000-0000-000000000003")

PARTS = [
    ("BRK-PAD-001", "Front brake pad set", Decimal("180.00"), Decimal("95.00")),
    ("OIL-FLT-014", "Oil filter", Decimal("24.50"), Decimal("11.00")),
    ("ALT-220-R", "Remanufactured alternator", Decimal("0"), Decimal("410.00")),
    ("WPR-BLD-22", "Wiper blade 22in", Decimal("32.00"), None),
]


async def seed():
    await init_db()
    async with AsyncSessionLocal() as db:
        # Check if already seeded
        result = await db.execute(select(Organization).where(Organization.id == ORG_NORTH_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        # --- Organizations ---
        db.add_all([
            Organization(id=ORG_NORTH_ID, name="North Fleet Services", slug="north-fleet"),
            Organization(id=ORG_SOUTH_ID, name="South Haulage", slug="south-haulage"),
        ])
        await db.flush()

        # --- Suppliers ---
        db.add_all([
            Supplier(
                id=SUPPLIER_ALPHA_ID,
                organization_id=ORG_NORTH_ID,
                name="Alpha Auto Parts",
                email="quotes@alpha-parts.example",
                contact_person="Dana Ruiz",
            ),
            Supplier(
                id=SUPPLIER_BETA_ID,
                organization_id=ORG_NORTH_ID,
                name="Beta Truck Supply",
                email="sales@beta-truck.example",
            ),
            Supplier(
                id=SUPPLIER_GAMMA_ID,
                organization_id=ORG_SOUTH_ID,
                name="Gamma Components",
                email="rfq@gamma.example",
            ),
        ])

        # --- Parts (list price, OEM cost) ---
        for org_id in (ORG_NORTH_ID, ORG_SOUTH_ID):
            for part_number, description, price, cost in PARTS:
                db.add(Part(
                    organization_id=org_id,
                    part_number=part_number,
                    description=description,
                    price=price,
                    cost=cost,
                ))

        await db.commit()
        print("Seeded 2 organizations, 3 suppliers, %d parts." % (len(PARTS) * 2))
    await close_db()


if __name__ == "__main__":
    asyncio.run(seed())
