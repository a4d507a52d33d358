"""Script to create the database tables for local development.

Production databases are migrated with ``alembic upgrade head``.
"""

import asyncio

from lorastudio.config import get_settings
from lorastudio.db.session import init_db


async def main():
    """Create all tables that do not exist yet."""
    settings = get_settings()
    print(f"Initializing database at {settings.database_url.split('@')[-1]}...")
    await init_db()
    print("Database initialized successfully")


if __name__ == "__main__":
    asyncio.run(main())
