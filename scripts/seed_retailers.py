#!/usr/bin/env python3
"""
Retailer seeding script.

Creates a ``retailers`` row for every registered retailer definition and
leaves existing rows (and their status) untouched.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from shelfwatch.crawler.registry import RetailerRegistry
from shelfwatch.db.models import Base, Retailer
from shelfwatch.db.session import AsyncSessionLocal, engine


async def seed_retailers() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    created = 0
    async with AsyncSessionLocal() as db:
        for slug in RetailerRegistry.get_supported_retailers():
            definition = RetailerRegistry.get(slug)
            result = await db.execute(select(Retailer).where(Retailer.slug == slug))
            if result.scalar_one_or_none():
                print(f"  exists: {slug}")
                continue
            db.add(Retailer(slug=slug, name=definition.name, base_url=definition.base_url))
            created += 1
            print(f"  created: {slug} ({definition.name})")
        await db.commit()

    print(f"Seeded {created} retailer(s)")


async def list_retailers() -> None:
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Retailer).order_by(Retailer.slug))
        for retailer in result.scalars().all():
            print(
                f"{retailer.slug:<16} {retailer.name:<16} status={retailer.status} "
                f"failures={retailer.consecutive_failures}"
            )


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "--list":
        asyncio.run(list_retailers())
    else:
        asyncio.run(seed_retailers())
