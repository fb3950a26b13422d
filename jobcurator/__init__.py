"""
JobCurator: curation pipeline for a multi-source job catalog.

Normalizes and deduplicates crawled postings, ranks a featured set, and
retires stale listings with conservative liveness probes.
"""

__version__ = "1.0.0"

from jobcurator.dedupe import check_duplicate, choose_best_duplicate, dedup_sweep, ingest_record
from jobcurator.featured import refresh_featured
from jobcurator.lifecycle import expire_sweep, restore_sweep
from jobcurator.models import DeactivationReason, JobRecord
from jobcurator.scoring import compute_score

__all__ = [
    "DeactivationReason",
    "JobRecord",
    "check_duplicate",
    "choose_best_duplicate",
    "compute_score",
    "dedup_sweep",
    "expire_sweep",
    "ingest_record",
    "refresh_featured",
    "restore_sweep",
]
