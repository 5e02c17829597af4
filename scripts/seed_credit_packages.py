"""Seed the default credit package catalogue into the configured database."""

import asyncio
import os
import sys

# Add parent dir to path to find config/database
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import Database
import models  # noqa: F401
from services.packages import seed_default_packages


async def seed_packages_async() -> int:
    print("🌱 Seeding credit packages...")
    database = Database(settings.DATABASE_URL)
    database.connect()
    try:
        if settings.AUTO_CREATE_DB_SCHEMA:
            await database.create_schema()
        async with database.session() as session:
            inserted = await seed_default_packages(session, currency=settings.STRIPE_CURRENCY)
    finally:
        await database.disconnect()

    if inserted:
        print(f"✅ Inserted {inserted} packages.")
    else:
        print("✅ Catalogue already up to date.")
    return inserted


if __name__ == "__main__":
    asyncio.run(seed_packages_async())
