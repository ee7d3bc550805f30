"""Popularity ranking over sliding time windows."""

from postpulse.ranking.windows import WINDOWS, most_popular

__all__ = ["WINDOWS", "most_popular"]
