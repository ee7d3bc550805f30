"""Reconciliation of fetched candidates against the post store.

A pass classifies every candidate before writing anything:

- absent from the store -> new, written with one bulk insert
- present with different counters or payload -> changed, updated one by one
- present and identical -> unchanged, only counted

New posts another writer stored between classify and insert are skipped by
the insert and counted as unchanged.

The insert and the updates are independent: a failed insert does not stop
the updates, and a failed update does not stop the others. Nothing is
rolled back; re-running the pass converges because rows already written
classify as unchanged.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from postpulse.core.errors import StoreError
from postpulse.core.logging import get_logger
from postpulse.core.schemas import CandidatePost

logger = get_logger(__name__)


@dataclass
class ReconcileReport:
    """Outcome counts of one reconciliation."""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    duplicates: int = 0
    failed_updates: List[str] = field(default_factory=list)
    insert_failed: bool = False

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged

    @property
    def ok(self) -> bool:
        return not self.insert_failed and not self.failed_updates

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total"] = self.total
        return data


def dedupe_candidates(candidates: Sequence[CandidatePost]) -> List[CandidatePost]:
    """
    Collapse repeated external ids within one batch.

    The last occurrence wins; it keeps the position of the first occurrence.
    """
    latest: Dict[str, CandidatePost] = {}
    for candidate in candidates:
        latest[candidate.external_id] = candidate
    return list(latest.values())


def has_changed(existing: Any, candidate: CandidatePost) -> bool:
    """Whether a stored post differs from a freshly fetched one."""
    return (
        existing.favorite_count != candidate.favorite_count
        or existing.share_count != candidate.share_count
        or existing.raw_status != candidate.raw_status
    )


class Reconciler:
    """Merges fetched candidates into the post store."""

    def __init__(self, store, update_concurrency: int = 8, batch_lookups: bool = False):
        self.store = store
        self.update_concurrency = max(1, update_concurrency)
        self.batch_lookups = batch_lookups

    async def classify(
        self,
        candidates: Sequence[CandidatePost]
    ) -> tuple[List[CandidatePost], List[CandidatePost], int]:
        """
        Split candidates into new and changed sets.

        One point lookup per candidate, in order, or a single batch lookup
        when enabled. A lookup failure raises ``StoreError`` and aborts the
        pass before any write.

        Returns:
            Tuple of (new, changed, unchanged_count)
        """
        new: List[CandidatePost] = []
        changed: List[CandidatePost] = []
        unchanged = 0

        stored = None
        if self.batch_lookups:
            stored = await self.store.find_many([c.external_id for c in candidates])

        for candidate in candidates:
            if stored is not None:
                existing = stored.get(candidate.external_id)
            else:
                existing = await self.store.find_by_external_id(candidate.external_id)
            if existing is None:
                new.append(candidate)
            elif has_changed(existing, candidate):
                changed.append(candidate)
            else:
                unchanged += 1

        return new, changed, unchanged

    async def _apply_updates(self, changed: Sequence[CandidatePost]) -> List[Optional[StoreError]]:
        semaphore = asyncio.Semaphore(self.update_concurrency)

        async def _update(candidate: CandidatePost) -> Optional[StoreError]:
            async with semaphore:
                try:
                    await self.store.update_engagement(candidate)
                    return None
                except StoreError as e:
                    logger.error(
                        f"Update failed for post {candidate.external_id}: {e.message}",
                        extra={"error_kind": e.kind, "operation": e.operation, "external_id": candidate.external_id}
                    )
                    return e

        return await asyncio.gather(*(_update(candidate) for candidate in changed))

    async def reconcile(self, candidates: Sequence[CandidatePost]) -> ReconcileReport:
        """
        Reconcile a batch of candidates with the store.

        Args:
            candidates: Posts from the current fetch, order irrelevant

        Returns:
            ReconcileReport with inserted, updated and unchanged counts

        Raises:
            StoreError: if a lookup fails (nothing written), or after both
                write phases ran when the insert or any update failed. The
                error carries the partial report in ``report``.
        """
        report = ReconcileReport()

        unique = dedupe_candidates(candidates)
        report.duplicates = len(candidates) - len(unique)
        if report.duplicates:
            logger.warning(f"Collapsed {report.duplicates} duplicate ids in candidate batch")

        new, changed, report.unchanged = await self.classify(unique)
        logger.info(
            f"Classified {len(unique)} candidates: "
            f"{len(new)} new, {len(changed)} changed, {report.unchanged} unchanged"
        )

        insert_error: Optional[StoreError] = None
        if new:
            try:
                report.inserted = await self.store.insert_many(new)
                skipped = len(new) - report.inserted
                if skipped:
                    # rows written by another writer since classify; the next pass compares them
                    report.unchanged += skipped
                    logger.warning(
                        f"{skipped} of {len(new)} new posts already existed at insert time",
                        extra={"operation": "insert", "count": skipped}
                    )
            except StoreError as e:
                insert_error = e
                report.insert_failed = True
                logger.error(
                    f"Bulk insert of {len(new)} posts failed: {e.message}",
                    extra={"error_kind": e.kind, "operation": e.operation, "count": len(new)}
                )

        update_errors: List[StoreError] = []
        if changed:
            results = await self._apply_updates(changed)
            for candidate, error in zip(changed, results):
                if error is None:
                    report.updated += 1
                else:
                    update_errors.append(error)
                    report.failed_updates.append(candidate.external_id)

        logger.info(
            f"Reconciled {len(unique)} candidates: {report.inserted} inserted, "
            f"{report.updated} updated, {report.unchanged} unchanged",
            extra=report.to_dict()
        )

        if insert_error is not None:
            insert_error.report = report
            raise insert_error
        if update_errors:
            first = update_errors[0]
            raise StoreError(
                "update",
                f"{len(update_errors)} of {len(changed)} updates failed; first: {first.message}",
                first.external_id,
                report=report,
            )

        return report
