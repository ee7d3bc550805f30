"""Sliding windows for the popular-post endpoints."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from postpulse.core.models import Post
from postpulse.core.store import PostStore
from postpulse.core.time import window_start

WINDOWS: Dict[str, timedelta] = {
    "7-hours": timedelta(hours=7),
    "7-days": timedelta(days=7),
    "7-weeks": timedelta(weeks=7),
}


async def most_popular(
    store: PostStore,
    window: timedelta,
    limit: int = 7,
    now: Optional[datetime] = None
) -> List[Post]:
    """Most engaged posts published within ``window`` before ``now``."""
    return await store.most_popular(window_start(window, now), limit)
