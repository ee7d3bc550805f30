"""Reconciliation pass orchestrator.

One pass = fetch the query once, reconcile the candidates, report. Upstream
and store failures end the pass and come back as a failed ``PassResult``;
they are logged here with their kind and context and never raised, so the
scheduler only has to record the result and wait for the next tick.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from postpulse.core.errors import StoreError, UpstreamError
from postpulse.core.logging import get_logger
from postpulse.core.time import utcnow
from postpulse.ingestor.reconciler import ReconcileReport, Reconciler

logger = get_logger(__name__)


@dataclass
class PassResult:
    """Result of one reconciliation pass."""
    query: str
    status: str = "success"  # success | failed
    report: Optional[ReconcileReport] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    fetched: int = 0
    started_at: datetime = field(default_factory=utcnow)
    runtime_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "status": self.status,
            "report": self.report.to_dict() if self.report else None,
            "error_kind": self.error_kind,
            "error": self.error,
            "fetched": self.fetched,
            "started_at": self.started_at.isoformat(),
            "runtime_seconds": self.runtime_seconds,
        }


async def run_reconciliation_pass(query: str, fetcher, reconciler: Reconciler) -> PassResult:
    """
    Run one fetch-classify-write cycle for ``query``.

    Args:
        query: Search expression sent to the API
        fetcher: Object with ``async fetch(query)`` returning candidates
        reconciler: Reconciler bound to the post store

    Returns:
        PassResult; ``status`` is "failed" when the fetch or any store
        operation failed
    """
    start_time = time.monotonic()
    result = PassResult(query=query)

    logger.info(f"Starting reconciliation pass for query {query!r}")

    try:
        candidates = await fetcher.fetch(query)
        result.fetched = len(candidates)
        result.report = await reconciler.reconcile(candidates)

    except UpstreamError as e:
        result.status = "failed"
        result.error_kind = e.kind
        result.error = str(e)
        logger.error(
            f"Fetch for {e.query!r} failed, pass aborted: {e.message}",
            extra={"error_kind": e.kind, "query": e.query, "status_code": e.status_code}
        )

    except StoreError as e:
        result.status = "failed"
        result.error_kind = e.kind
        result.error = str(e)
        result.report = e.report
        logger.error(
            f"Store failure, pass failed: {e}",
            extra={
                "error_kind": e.kind,
                "query": query,
                "operation": e.operation,
                "external_id": e.external_id,
            }
        )

    result.runtime_seconds = round(time.monotonic() - start_time, 2)

    if result.ok:
        report = result.report
        logger.info(
            f"Pass completed in {result.runtime_seconds}s: "
            f"{report.inserted} inserted, {report.updated} updated, "
            f"{report.unchanged} unchanged",
            extra={"query": query, **report.to_dict()}
        )
    else:
        logger.warning(
            f"Pass failed after {result.runtime_seconds}s ({result.error_kind})",
            extra={"query": query, "error_kind": result.error_kind}
        )

    return result
