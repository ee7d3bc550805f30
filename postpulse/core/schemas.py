"""Plain data shapes shared between the fetcher, the store and the API."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from postpulse.core.time import normalize_timezone


@dataclass
class CandidatePost:
    """A post returned by the search API, not yet compared against the store."""
    external_id: str
    published_at: datetime
    raw_status: Dict[str, Any] = field(default_factory=dict)
    favorite_count: Optional[int] = None
    share_count: Optional[int] = None

    def to_row(self) -> Dict[str, Any]:
        """Column values for a new ``posts`` row."""
        return {
            "external_id": self.external_id,
            "raw_status": self.raw_status,
            "published_at": self.published_at,
            "favorite_count": self.favorite_count,
            "share_count": self.share_count,
        }


class PostOut(BaseModel):
    """Post as returned by the read endpoints."""
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    published_at: datetime
    favorite_count: Optional[int] = None
    share_count: Optional[int] = None
    raw_status: Dict[str, Any]

    @field_validator("published_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return normalize_timezone(value)
