#!/usr/bin/env python
"""Database migration script.

Usage:
    python scripts/migrate.py

Creates the flag ledger, pending queue, published content, chat and
case-note tables in the database named by DATABASE_URL. Existing tables
are left untouched, so it is safe to run on every deploy.
"""

import asyncio
import sys

# Ensure the project is in the path
sys.path.insert(0, "src")


async def main() -> None:
    """Run database migrations."""
    # Import after path setup
    from sqlmodel import SQLModel

    from carepath.config import get_settings
    from carepath.infra.database import create_engine, dispose_engine, init_database

    settings = get_settings()
    engine = create_engine(settings)
    target = settings.database_url.rsplit("@", 1)[-1]
    print(f"Running database migrations against {target}...")

    try:
        await init_database(engine)
        for table in sorted(SQLModel.metadata.tables):
            print(f"  ok  {table}")
        print("Database migrations completed successfully.")
    except Exception as e:
        print(f"Migration failed: {e}")
        raise
    finally:
        await dispose_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
