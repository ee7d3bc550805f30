"""Status normalization.

Turns raw search API statuses into ``CandidatePost`` records. The payload
is kept verbatim; only the identifier, timestamp and engagement counters
are lifted out of it.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from postpulse.core.logging import get_logger
from postpulse.core.schemas import CandidatePost
from postpulse.core.time import parse_status_date, utcnow

logger = get_logger(__name__)


def extract_external_id(status: Dict[str, Any]) -> Optional[str]:
    """Get the platform identifier of a status as a string."""
    external_id = status.get("id_str")
    if external_id:
        return str(external_id)

    # Numeric ids lose precision in some JSON decoders, prefer id_str
    numeric_id = status.get("id")
    if numeric_id is not None and numeric_id != "":
        return str(numeric_id)

    return None


def _counter(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_status(
    status: Dict[str, Any],
    fetched_at: Optional[datetime] = None
) -> Optional[CandidatePost]:
    """
    Build a candidate from a raw status.

    Args:
        status: Status object as returned by the search API
        fetched_at: Fallback publication time when ``created_at`` is unusable

    Returns:
        CandidatePost, or None if the status carries no identifier
    """
    if not isinstance(status, dict):
        logger.warning(f"Skipping non-object status: {type(status).__name__}")
        return None

    external_id = extract_external_id(status)
    if not external_id:
        logger.warning("Skipping status without identifier")
        return None

    published_at = parse_status_date(status.get("created_at"))
    if published_at is None:
        published_at = fetched_at or utcnow()
        logger.debug(f"Status {external_id} has no usable created_at, using fetch time")

    return CandidatePost(
        external_id=external_id,
        published_at=published_at,
        raw_status=status,
        favorite_count=_counter(status.get("favorite_count")),
        share_count=_counter(status.get("retweet_count")),
    )


def normalize_statuses(
    statuses: Iterable[Dict[str, Any]],
    fetched_at: Optional[datetime] = None
) -> List[CandidatePost]:
    """Normalize a page of statuses, dropping the ones without identifier."""
    fetched_at = fetched_at or utcnow()
    candidates = []
    for status in statuses:
        candidate = normalize_status(status, fetched_at)
        if candidate is not None:
            candidates.append(candidate)
    return candidates
