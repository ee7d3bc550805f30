"""Database models for PostPulse."""

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import mapped_column

from .db import Base
from .time import utcnow


class Post(Base):
    """Posts observed by the search query, one row per external id."""
    __tablename__ = "posts"

    id = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    external_id = mapped_column(String(64), unique=True, nullable=False)
    raw_status = mapped_column(JSON, nullable=False)  # payload as received
    published_at = mapped_column(DateTime(timezone=True), nullable=False, index=True)  # UTC, set once
    favorite_count = mapped_column(Integer, nullable=True)
    share_count = mapped_column(Integer, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Post {self.external_id} favorites={self.favorite_count} "
            f"shares={self.share_count}>"
        )


# Read API filters on the window and sorts by engagement
Index("idx_posts_published_engagement", Post.published_at, Post.favorite_count, Post.share_count)
