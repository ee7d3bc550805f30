"""Fetch, reconcile and schedule passes over the search API."""

from postpulse.ingestor.reconciler import Reconciler, ReconcileReport
from postpulse.ingestor.twitter import SearchFetcher

__all__ = ["Reconciler", "ReconcileReport", "SearchFetcher"]
