"""
Lifecycle sweeps: retire stale records and restore wrongly retired ones.

Two passes run in order:
1. No-network: deadline passed, or posted longer ago than the max age
2. Network: liveness probe of active records, oldest posted first

The restore sweep probes network-retired records and reactivates those that
are no longer found expired. Probes are sequential with a fixed delay between
them; every probed record is stamped so an interrupted sweep resumes where it
stopped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from jobcurator.dedupe import (
    DEFAULT_DATE_WINDOW_DAYS,
    DEFAULT_SIMILARITY_THRESHOLD,
    CandidateScope,
    check_duplicate,
    same_company_scope,
)
from jobcurator.fetchers.http import LivenessProber, ProbeVerdict
from jobcurator.models import RESTORABLE_REASONS, DeactivationReason, now_utc
from jobcurator.storage.base import JobStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 60
DEFAULT_PROBE_LIMIT = 100
DEFAULT_RESTORE_LIMIT = 200
DEFAULT_REVALIDATE_AFTER_DAYS = 7
DEFAULT_RESTORE_REVALIDATE_AFTER_DAYS = 0
DEFAULT_PROBE_DELAY_S = 0.5


@dataclass
class ExpireSweepResult:
    """Summary of an expiry sweep."""
    deadline_expired: int = 0
    age_expired: int = 0
    probed: int = 0
    valid: int = 0
    expired: int = 0
    kept_uncertain: int = 0
    failed: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)


@dataclass
class RestoreSweepResult:
    """Summary of a restore sweep."""
    checked: int = 0
    restored: int = 0
    still_expired: int = 0
    kept_duplicate: int = 0
    failed: int = 0


def expire_no_network(
    store: JobStore,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    now: Optional[datetime] = None,
) -> Tuple[int, int]:
    """
    Bulk-retire records past their deadline, then records older than the max age.

    Returns:
        (deadline_expired, age_expired) tuple
    """
    at = now or now_utc()
    deadline_expired = store.deactivate_where(
        DeactivationReason.DEADLINE_PASSED.value, at, deadline_before=at,
    )
    age_expired = store.deactivate_where(
        DeactivationReason.expired_after(max_age_days), at,
        posted_before=at - timedelta(days=max_age_days),
    )
    return deadline_expired, age_expired


async def expire_sweep(
    store: JobStore,
    prober: Optional[LivenessProber] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    probe_limit: int = DEFAULT_PROBE_LIMIT,
    revalidate_after_days: int = DEFAULT_REVALIDATE_AFTER_DAYS,
    delay_s: float = DEFAULT_PROBE_DELAY_S,
    now: Optional[datetime] = None,
    network: bool = True,
) -> ExpireSweepResult:
    """
    Run the no-network pass, then probe up to ``probe_limit`` active records.

    Timeouts, 5xx and 403 never deactivate a record.
    """
    at = now or now_utc()
    result = ExpireSweepResult()

    try:
        result.deadline_expired, result.age_expired = expire_no_network(store, max_age_days, at)
    except Exception:
        logger.exception("No-network expiry pass failed")
        result.failed += 1

    if result.deadline_expired:
        result.reasons[DeactivationReason.DEADLINE_PASSED.value] = result.deadline_expired
    if result.age_expired:
        result.reasons[DeactivationReason.expired_after(max_age_days)] = result.age_expired

    if not network or probe_limit <= 0:
        _log_expire_summary(result)
        return result

    records = store.list_for_validation(at - timedelta(days=revalidate_after_days), probe_limit)
    logger.info("Probing %d records", len(records))

    own_prober = prober is None
    prober = prober or LivenessProber()
    reasons: Counter = Counter(result.reasons)

    try:
        for i, record in enumerate(records):
            if i and delay_s > 0:
                await asyncio.sleep(delay_s)

            try:
                probe = await prober.probe(record.url)
                result.probed += 1

                if probe.expired:
                    store.set_active_flag(record.job_id, False, probe.reason, at)
                    result.expired += 1
                    reasons[probe.reason] += 1
                    logger.info("Expired %s (%s): %s", record.job_id, probe.reason, probe.detail)
                elif probe.verdict == ProbeVerdict.VALID:
                    result.valid += 1
                else:
                    result.kept_uncertain += 1
                    logger.debug("Kept %s active: %s", record.job_id, probe.detail)

                store.mark_validated(record.job_id, at)
            except Exception:
                logger.exception("Failed to validate %s", record.job_id)
                result.failed += 1
    finally:
        if own_prober:
            await prober.close()

    result.reasons = dict(reasons)
    _log_expire_summary(result)
    return result


def _log_expire_summary(result: ExpireSweepResult) -> None:
    logger.info(
        "Expire sweep: deadline=%d age=%d probed=%d valid=%d expired=%d uncertain=%d failed=%d",
        result.deadline_expired, result.age_expired, result.probed,
        result.valid, result.expired, result.kept_uncertain, result.failed,
    )


async def restore_sweep(
    store: JobStore,
    prober: Optional[LivenessProber] = None,
    limit: int = DEFAULT_RESTORE_LIMIT,
    delay_s: float = DEFAULT_PROBE_DELAY_S,
    now: Optional[datetime] = None,
    revalidate_after_days: int = DEFAULT_RESTORE_REVALIDATE_AFTER_DAYS,
    candidates_scope: Optional[CandidateScope] = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    date_window_days: float = DEFAULT_DATE_WINDOW_DAYS,
) -> RestoreSweepResult:
    """
    Re-probe records retired by a liveness probe and reactivate the ones not found expired.

    Records never probed come first, then the least recently probed, so
    consecutive runs walk the whole retired set. A live record that
    duplicates an active one stays retired. Deadline, age and duplicate
    retirements are never reversed here.
    """
    at = now or now_utc()
    result = RestoreSweepResult()

    records = store.list_inactive(
        reasons=RESTORABLE_REASONS,
        include_unknown_reason=True,
        limit=limit,
        validated_before=at - timedelta(days=revalidate_after_days),
    )
    logger.info("Re-checking %d inactive records", len(records))

    scope = candidates_scope or same_company_scope(store)
    own_prober = prober is None
    prober = prober or LivenessProber()

    try:
        for i, record in enumerate(records):
            if i and delay_s > 0:
                await asyncio.sleep(delay_s)

            try:
                probe = await prober.probe(record.url)
                result.checked += 1

                if probe.expired:
                    result.still_expired += 1
                    logger.debug("Still expired %s: %s", record.job_id, probe.detail)
                else:
                    check = check_duplicate(
                        record, scope(record), similarity_threshold, date_window_days,
                    )
                    if check.is_duplicate:
                        result.kept_duplicate += 1
                        logger.info(
                            "Kept %s retired: duplicates active %s", record.job_id, check.matched.job_id,
                        )
                    else:
                        store.set_active_flag(record.job_id, True, None, at)
                        result.restored += 1
                        logger.info("Restored %s", record.job_id)

                store.mark_validated(record.job_id, at)
            except Exception:
                logger.exception("Failed to restore %s", record.job_id)
                result.failed += 1
    finally:
        if own_prober:
            await prober.close()

    logger.info(
        "Restore sweep: checked=%d restored=%d still_expired=%d kept_duplicate=%d failed=%d",
        result.checked, result.restored, result.still_expired, result.kept_duplicate, result.failed,
    )
    return result
