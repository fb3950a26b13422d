"""
Storage layer for JobCurator.

Provides:
- JobStore: the interface the curation workflows consume
- JobDatabase: SQLite persistence with upserts, lifecycle flags and CSV export
"""

from jobcurator.storage.base import CatalogStats, JobStore
from jobcurator.storage.sqlite import JobDatabase

__all__ = ["CatalogStats", "JobDatabase", "JobStore"]
