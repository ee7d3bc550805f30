"""Repository layer for database operations.

Provides async lookups, idempotent bulk inserts and engagement updates
for posts, plus the windowed popularity query used by the read API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from postpulse.core.logging import get_logger
from postpulse.core.models import Post
from postpulse.core.schemas import CandidatePost
from postpulse.core.time import utcnow

logger = get_logger(__name__)


async def get_post_by_external_id(session: AsyncSession, external_id: str) -> Optional[Post]:
    """
    Get a post by its external id.

    Args:
        session: Database session
        external_id: Identifier assigned by the source platform

    Returns:
        Post object, or None if the post has not been stored yet
    """
    stmt = select(Post).where(Post.external_id == external_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_posts_by_external_ids(
    session: AsyncSession,
    external_ids: Sequence[str]
) -> Dict[str, Post]:
    """Get stored posts for a set of external ids, keyed by external id."""
    if not external_ids:
        return {}

    stmt = select(Post).where(Post.external_id.in_(set(external_ids)))
    result = await session.execute(stmt)
    return {post.external_id: post for post in result.scalars().all()}


async def insert_posts(session: AsyncSession, candidates: Sequence[CandidatePost]) -> int:
    """
    Bulk insert new posts.

    Rows whose external id already exists are skipped by the database
    (ON CONFLICT DO NOTHING), so replaying an insert is harmless.

    Args:
        session: Database session
        candidates: Posts to insert

    Returns:
        Number of rows actually inserted
    """
    if not candidates:
        return 0

    now = utcnow()
    rows: List[Dict[str, Any]] = []
    for candidate in candidates:
        row = candidate.to_row()
        row["created_at"] = now
        rows.append(row)

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(Post).values(rows).on_conflict_do_nothing(index_elements=["external_id"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(Post).values(rows).on_conflict_do_nothing(index_elements=["external_id"])
    else:
        stmt = Post.__table__.insert().values(rows)

    result = await session.execute(stmt)
    await session.commit()

    inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(rows)
    if inserted < len(rows):
        logger.warning(
            f"Skipped {len(rows) - inserted} posts already present during bulk insert",
            extra={"requested": len(rows), "inserted": inserted}
        )
    logger.debug(f"Inserted {inserted} posts")
    return inserted


async def update_post_engagement(
    session: AsyncSession,
    external_id: str,
    raw_status: Dict[str, Any],
    favorite_count: Optional[int],
    share_count: Optional[int]
) -> bool:
    """
    Refresh the payload and engagement counters of a stored post.

    ``published_at`` is never part of the update.

    Returns:
        True if a row was updated, False if no post has this external id
    """
    stmt = (
        update(Post)
        .where(Post.external_id == external_id)
        .values(
            raw_status=raw_status,
            favorite_count=favorite_count,
            share_count=share_count,
            updated_at=utcnow(),
        )
    )
    result = await session.execute(stmt)
    await session.commit()

    updated = result.rowcount > 0
    logger.debug(
        f"Updated engagement for post {external_id}: "
        f"favorites={favorite_count}, shares={share_count}"
    )
    return updated


async def get_most_popular_posts(
    session: AsyncSession,
    since: datetime,
    limit: int = 7
) -> List[Post]:
    """
    Get the most engaged posts published since a given time.

    Ordered by favorite count, then share count, both descending with
    missing counters last.
    """
    stmt = (
        select(Post)
        .where(Post.published_at >= since)
        .order_by(
            Post.favorite_count.desc().nulls_last(),
            Post.share_count.desc().nulls_last(),
            Post.id
        )
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_posts(session: AsyncSession) -> int:
    """Get the number of stored posts."""
    result = await session.execute(select(func.count()).select_from(Post))
    return result.scalar_one()
