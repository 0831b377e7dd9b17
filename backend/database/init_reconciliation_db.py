"""
Bank Reconciliation Core - Database Initialization

Creates the reconciliation tables and seeds the default expense categories.

Usage: python -m database.init_reconciliation_db [create|drop|check|seed]
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List

from sqlalchemy import inspect
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

from database.connection import engine, Base, AsyncSessionLocal
from database import reconciliation_models  # noqa: F401  (registers tables)
from reconciliation.services.category_service import CategoryRepository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables() -> List[str]:
    """Create all reconciliation tables"""
    logger.info("Creating reconciliation database tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    tables = await check_tables()
    logger.info(f"Created reconciliation tables: {tables}")
    return tables


async def drop_tables():
    """Drop all reconciliation tables (use with caution!)"""
    logger.info("Dropping reconciliation database tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("All reconciliation tables dropped")


async def check_tables() -> List[str]:
    """Check which tables exist"""
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    return sorted(tables)


async def seed_categories() -> int:
    """Seed default expense categories and rules"""
    async with AsyncSessionLocal() as session:
        return await CategoryRepository(session).seed_defaults()


async def main():
    """Main initialization function"""
    command = sys.argv[1] if len(sys.argv) > 1 else "create"

    if command == "drop":
        await drop_tables()
    elif command == "check":
        tables = await check_tables()
        print(f"Existing tables: {tables}")
    elif command == "create":
        tables = await create_tables()
        created = await seed_categories()
        print(f"Created tables: {tables}")
        print(f"Seeded expense rules: {created}")
    elif command == "seed":
        created = await seed_categories()
        print(f"Seeded expense rules: {created}")
    else:
        print(f"Unknown command: {command}")
        print("Usage: python -m database.init_reconciliation_db [create|drop|check|seed]")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
