"""Create the scheduling tables directly from metadata.

Meant for local SQLite databases and throwaway environments. Production
databases are created with ``scripts/migrate.py`` so that the PostgreSQL-only
overlap constraint is installed.
"""

import asyncio

from portal_scheduling.database import engine
from portal_scheduling.models import metadata


async def init_db(drop: bool = False) -> None:
    """Create all tables, optionally dropping existing ones first."""
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(metadata.drop_all)
            print("✓ Existing tables dropped")

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Database initialized: {', '.join(sorted(metadata.tables))}")


if __name__ == "__main__":
    import sys

    asyncio.run(init_db(drop="--drop" in sys.argv[1:]))
