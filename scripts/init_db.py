#!/usr/bin/env python3
"""Database setup script for PostPulse.

Waits for the database, creates the posts table and prints how many
posts are already stored.
"""

import asyncio
import sys

from postpulse.core.db import AsyncSessionLocal, create_all, init_db
from postpulse.core.repositories import count_posts
from postpulse.core.settings import get_settings

settings = get_settings()


async def main() -> int:
    """Create tables and report the current post count."""
    print("🌱 Preparing PostPulse database...")

    try:
        await init_db()
        print("🔌 Connected to database")

        await create_all()
        print("✅ Database tables ready")

        async with AsyncSessionLocal() as session:
            total = await count_posts(session)

        db_location = settings.db_url.split("@")[1] if "@" in settings.db_url else "configured"
        print(f"📈 Stored posts: {total}")
        print(f"🔗 Database: {db_location}")
        return 0

    except Exception as e:
        print(f"❌ Error preparing database: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
