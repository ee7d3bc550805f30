"""Post store used by the reconciler.

Each operation opens its own session, runs under a timeout and turns
database failures into ``StoreError`` so callers deal with one error type.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postpulse.core import repositories
from postpulse.core.errors import StoreError
from postpulse.core.logging import get_logger
from postpulse.core.models import Post
from postpulse.core.schemas import CandidatePost

logger = get_logger(__name__)

T = TypeVar("T")


class PostStore:
    """Create/find/update access to stored posts."""

    def __init__(self, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        external_id: Optional[str] = None
    ) -> T:
        async def _with_session() -> T:
            async with self.session_factory() as session:
                return await work(session)

        try:
            return await asyncio.wait_for(_with_session(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StoreError(operation, f"timed out after {self.timeout}s", external_id)
        except (SQLAlchemyError, OSError) as e:
            # Drivers raise bare OSError when the server refuses the connection
            raise StoreError(operation, str(e) or type(e).__name__, external_id) from e

    async def find_by_external_id(self, external_id: str) -> Optional[Post]:
        """Point lookup of a stored post."""
        return await self._run(
            "lookup",
            lambda session: repositories.get_post_by_external_id(session, external_id),
            external_id,
        )

    async def find_many(self, external_ids: Sequence[str]) -> Dict[str, Post]:
        """Batch lookup of stored posts keyed by external id."""
        return await self._run(
            "lookup",
            lambda session: repositories.get_posts_by_external_ids(session, external_ids),
        )

    async def insert_many(self, candidates: Sequence[CandidatePost]) -> int:
        """Bulk insert new posts, returning how many rows were written."""
        return await self._run(
            "insert",
            lambda session: repositories.insert_posts(session, candidates),
        )

    async def update_engagement(self, candidate: CandidatePost) -> None:
        """Replace payload and counters of an existing post."""
        updated = await self._run(
            "update",
            lambda session: repositories.update_post_engagement(
                session,
                candidate.external_id,
                candidate.raw_status,
                candidate.favorite_count,
                candidate.share_count,
            ),
            candidate.external_id,
        )
        if not updated:
            raise StoreError("update", "no stored post with this id", candidate.external_id)

    async def most_popular(self, since: datetime, limit: int) -> List[Post]:
        """Most engaged posts published since ``since``."""
        return await self._run(
            "query",
            lambda session: repositories.get_most_popular_posts(session, since, limit),
        )

    async def count(self) -> int:
        return await self._run("count", repositories.count_posts)
