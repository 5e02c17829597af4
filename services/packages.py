"""Credit package catalogue lookups and default seeding."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_package import CreditPackage
from services.errors import InvalidPackage

logger = logging.getLogger(__name__)


DEFAULT_CREDIT_PACKAGES: List[Dict[str, Any]] = [
    {
        "id": "starter",
        "name": "Starter",
        "credits": 100,
        "price_cents": 500,
        "description": "100 AI-written notes",
        "is_popular": False,
    },
    {
        "id": "popular",
        "name": "Popular",
        "credits": 500,
        "price_cents": 2000,
        "description": "500 AI-written notes",
        "is_popular": True,
    },
    {
        "id": "pro",
        "name": "Pro",
        "credits": 1200,
        "price_cents": 4000,
        "description": "1200 AI-written notes for busy senders",
        "is_popular": False,
    },
]


async def resolve_package(
    db: AsyncSession,
    package_id: Optional[str],
    *,
    include_inactive: bool = False,
) -> CreditPackage:
    """Look up a package; retired packages only resolve with ``include_inactive``."""
    if not package_id:
        raise InvalidPackage(package_id)
    query = select(CreditPackage).where(CreditPackage.id == package_id)
    if not include_inactive:
        query = query.where(CreditPackage.active.is_(True))
    result = await db.execute(query)
    package = result.scalar_one_or_none()
    if package is None:
        raise InvalidPackage(package_id)
    return package


async def list_packages(db: AsyncSession) -> List[CreditPackage]:
    result = await db.execute(
        select(CreditPackage)
        .where(CreditPackage.active.is_(True))
        .order_by(CreditPackage.credits.asc())
    )
    return list(result.scalars().all())


async def seed_default_packages(db: AsyncSession, currency: str = "usd") -> int:
    """Insert any default package that is missing. Returns the number inserted."""
    result = await db.execute(select(CreditPackage.id))
    existing = set(result.scalars().all())
    inserted = 0
    for default in DEFAULT_CREDIT_PACKAGES:
        if default["id"] in existing:
            continue
        db.add(CreditPackage(currency=currency, active=True, **default))
        inserted += 1
    if inserted:
        await db.commit()
        logger.info("Seeded %s default credit packages", inserted)
    return inserted


def serialize_package(package: CreditPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "credits": package.credits,
        "price": round(package.price_cents / 100, 2),
        "currency": package.currency,
        "description": package.description or "",
        "isPopular": bool(package.is_popular),
    }
