"""
Featured set refresh: rescore every active record and promote a bounded set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

from jobcurator.models import JobRecord, now_utc
from jobcurator.scoring import compute_score
from jobcurator.storage.base import JobStore

logger = logging.getLogger(__name__)

FEATURED_LIMIT = 6
FEATURED_CHUNK_SIZE = 500


@dataclass
class FeaturedRefreshResult:
    """Summary of one refresh run."""
    updated: int = 0  # scores persisted
    pinned: int = 0
    top_scored: int = 0
    failed: int = 0
    winners: List[str] = field(default_factory=list)


def _chunks(items: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def select_winners(records: Sequence[JobRecord], limit: int = FEATURED_LIMIT) -> List[JobRecord]:
    """
    Pick the featured set.

    Every pinned record wins; remaining slots go to the highest-scored
    unpinned records (ties keep input order). Pins are never evicted, so the
    set exceeds ``limit`` only when pins alone do.
    """
    pinned = [r for r in records if r.featured_pinned]
    unpinned = sorted(
        (r for r in records if not r.featured_pinned),
        key=lambda r: r.featured_score,
        reverse=True,
    )
    return pinned + unpinned[:max(limit - len(pinned), 0)]


def refresh_featured(
    store: JobStore,
    limit: int = FEATURED_LIMIT,
    now: Optional[datetime] = None,
) -> FeaturedRefreshResult:
    """
    Recompute featured scores for all active records and rewrite featured flags.
    """
    at = now or now_utc()
    result = FeaturedRefreshResult()

    records = store.list_active()

    for record in records:
        record.featured_score = compute_score(record, now=at)
        try:
            store.set_score(record.job_id, record.featured_score)
            result.updated += 1
        except Exception:
            logger.exception("Failed to store featured score for %s", record.job_id)
            result.failed += 1

    winners = select_winners(records, limit)
    winner_ids = [r.job_id for r in winners]
    winner_set = set(winner_ids)
    others = [r.job_id for r in records if r.job_id not in winner_set]

    result.pinned = sum(1 for r in winners if r.featured_pinned)
    result.top_scored = len(winners) - result.pinned
    result.winners = winner_ids

    for ids, featured in ((winner_ids, True), (others, False)):
        for chunk in _chunks(ids, FEATURED_CHUNK_SIZE):
            try:
                store.set_featured(chunk, featured, at if featured else None)
            except Exception:
                logger.exception("Failed to set featured=%s on %d records", featured, len(chunk))
                result.failed += len(chunk)

    logger.info(
        "Featured refresh: updated=%d pinned=%d top_scored=%d failed=%d",
        result.updated, result.pinned, result.top_scored, result.failed,
    )
    return result
