"""
Duplicate detection and canonical-record resolution.

Deduplication strategy:
1. Bucket: dedup key (company | first title words | location) as a fast path
2. Company: records of the same company equivalence class
3. Decision: same company, similar title, same location, posted within a date window

The first surviving candidate wins (first-match, not best-match). When several
records describe the same job, the canonical one is chosen by source priority,
then by description completeness.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from jobcurator.models import DeactivationReason, JobRecord, now_utc
from jobcurator.normalize import (
    company_key,
    normalize_company,
    normalize_location,
    normalize_title,
    same_company,
    same_location,
)
from jobcurator.similarity import title_similarity
from jobcurator.storage.base import JobStore

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8
DEFAULT_DATE_WINDOW_DAYS = 7

# Ordered (keyword, rank) pairs; matched by case-insensitive substring, first match wins.
SOURCE_PRIORITY: Tuple[Tuple[str, int], ...] = (
    ("greenhouse", 100),
    ("lever", 100),
    ("ashby", 100),
    ("company website", 90),
    ("official", 90),
    ("wanted", 70),
    ("linkedin", 60),
    ("web3kr.jobs", 55),
    ("web3.career", 50),
    ("web3career", 50),
    ("web3jobs", 50),
    ("cryptojobslist", 45),
    ("jobs.sui.io", 40),
    ("jobs.solana.com", 40),
    ("jobs.arbitrum.io", 40),
    ("jobs.avax.network", 40),
    ("remoteok", 30),
    ("remote3", 30),
    ("rocketpunch", 20),
)
UNKNOWN_SOURCE_PRIORITY = 0

# record -> candidate records it should be compared against
CandidateScope = Callable[[JobRecord], List[JobRecord]]
# record -> grouping key for a whole-catalog sweep
GroupKey = Callable[[JobRecord], str]


@dataclass
class DuplicateCheck:
    """Outcome of comparing one record against a candidate list."""
    is_duplicate: bool
    similarity: float = 0.0
    matched: Optional[JobRecord] = None
    reason: Optional[str] = None


# ----------------------------- Decision function -----------------------------

def _days_between(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / 86400


def check_duplicate(
    record: JobRecord,
    candidates: Sequence[JobRecord],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    date_window_days: float = DEFAULT_DATE_WINDOW_DAYS,
) -> DuplicateCheck:
    """
    Check if a record is a duplicate of any candidate.

    Candidates are scanned in order and the first one passing every filter is
    returned. A missing posted date on either side skips the date filter.
    """
    for candidate in candidates:
        if candidate is record or (record.job_id and candidate.job_id == record.job_id):
            continue

        if not same_company(record.company, candidate.company):
            continue

        similarity = title_similarity(record.title, candidate.title)
        if similarity < similarity_threshold:
            continue

        if not same_location(record.location, candidate.location):
            continue

        if record.posted_date and candidate.posted_date:
            if _days_between(record.posted_date, candidate.posted_date) > date_window_days:
                continue

        return DuplicateCheck(
            is_duplicate=True,
            similarity=similarity,
            matched=candidate,
            reason=f"Similar title ({similarity:.0%}) at same company and location",
        )

    return DuplicateCheck(is_duplicate=False)


def source_priority(source: Optional[str]) -> int:
    """Rank a crawler source; unknown sources rank lowest."""
    lowered = (source or "").lower()
    if not lowered:
        return UNKNOWN_SOURCE_PRIORITY
    for keyword, rank in SOURCE_PRIORITY:
        if keyword in lowered:
            return rank
    return UNKNOWN_SOURCE_PRIORITY


def choose_best_duplicate(group: Sequence[JobRecord]) -> JobRecord:
    """
    Choose the canonical record among mutual duplicates.

    Highest source priority first, then the longest description. Ties keep
    the input order.
    """
    if not group:
        raise ValueError("No records to choose from")
    ranked = sorted(
        group,
        key=lambda r: (-source_priority(r.source), -len(r.description or "")),
    )
    return ranked[0]


def generate_dedup_key(record: JobRecord) -> str:
    """Bucketing key: ``company|first three title words|location``."""
    company = normalize_company(record.company)
    title = " ".join(normalize_title(record.title).split()[:3])
    location = normalize_location(record.location)
    return f"{company}|{title}|{location}"


# ----------------------------- In-memory batches -----------------------------

@dataclass
class DedupeResult:
    """Result of deduplicating an in-memory batch."""
    unique_records: List[JobRecord]
    duplicates_removed: int
    duplicates_by_key: int
    duplicates_by_fuzzy: int
    pairs: List[Tuple[str, str]] = field(default_factory=list)  # (dropped, kept)


class DedupeEngine:
    """
    Deduplicate a crawler batch against itself (and optionally against known records).

    Keeps two indexes: dedup key -> records for exact bucket hits and
    company key -> records for the full comparator.
    """

    def __init__(
        self,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        date_window_days: float = DEFAULT_DATE_WINDOW_DAYS,
    ):
        self.similarity_threshold = similarity_threshold
        self.date_window_days = date_window_days

        self._key_index: Dict[str, List[JobRecord]] = {}
        self._company_index: Dict[str, List[JobRecord]] = {}

    def clear(self) -> None:
        """Clear all indexes."""
        self._key_index.clear()
        self._company_index.clear()

    def _add_to_indexes(self, record: JobRecord) -> None:
        self._key_index.setdefault(generate_dedup_key(record), []).append(record)
        self._company_index.setdefault(company_key(record.company), []).append(record)

    def _remove_from_indexes(self, record: JobRecord) -> None:
        for index, key in (
            (self._key_index, generate_dedup_key(record)),
            (self._company_index, company_key(record.company)),
        ):
            bucket = index.get(key, [])
            index[key] = [r for r in bucket if r is not record]

    def find_duplicate(self, record: JobRecord) -> Tuple[DuplicateCheck, bool]:
        """
        Look the record up in the indexes.

        Returns the check and whether it was resolved by the dedup-key bucket.
        """
        bucket = self._key_index.get(generate_dedup_key(record), [])
        check = check_duplicate(
            record, bucket, self.similarity_threshold, self.date_window_days
        )
        if check.is_duplicate:
            return check, True

        candidates = self._company_index.get(company_key(record.company), [])
        check = check_duplicate(
            record, candidates, self.similarity_threshold, self.date_window_days
        )
        return check, False

    def dedupe(
        self,
        records: List[JobRecord],
        existing_records: Optional[List[JobRecord]] = None,
    ) -> DedupeResult:
        """
        Deduplicate a list of records.

        Args:
            records: New records to deduplicate
            existing_records: Optional already-stored records; these are never replaced

        Returns:
            DedupeResult with the surviving batch records and counters
        """
        self.clear()

        existing_ids = set()
        for existing in existing_records or []:
            self._add_to_indexes(existing)
            existing_ids.add(id(existing))

        unique: List[JobRecord] = []
        by_key = 0
        by_fuzzy = 0
        pairs: List[Tuple[str, str]] = []

        for record in records:
            check, from_bucket = self.find_duplicate(record)
            if not check.is_duplicate:
                self._add_to_indexes(record)
                unique.append(record)
                continue

            if from_bucket:
                by_key += 1
            else:
                by_fuzzy += 1

            matched = check.matched
            # A better copy of a batch record takes its place
            if id(matched) not in existing_ids and choose_best_duplicate([matched, record]) is record:
                self._remove_from_indexes(matched)
                self._add_to_indexes(record)
                unique = [record if r is matched else r for r in unique]
                pairs.append((matched.job_id, record.job_id))
            else:
                pairs.append((record.job_id, matched.job_id))

        return DedupeResult(
            unique_records=unique,
            duplicates_removed=by_key + by_fuzzy,
            duplicates_by_key=by_key,
            duplicates_by_fuzzy=by_fuzzy,
            pairs=pairs,
        )


# ----------------------------- Store workflows -----------------------------

def same_company_scope(store: JobStore) -> CandidateScope:
    """Default candidate set: active records of the record's company equivalence class."""
    def scope(record: JobRecord) -> List[JobRecord]:
        key = company_key(record.company)
        if not key:
            return []
        return store.list_active(company_key=key)
    return scope


def _group_by_company(record: JobRecord) -> str:
    return company_key(record.company)


@dataclass
class IngestResult:
    """Outcome of passing one crawled record through the ingest gate."""
    job_id: str
    stored: bool
    is_duplicate: bool = False
    canonical_id: Optional[str] = None
    reason: Optional[str] = None


def ingest_record(
    store: JobStore,
    record: JobRecord,
    candidates_scope: Optional[CandidateScope] = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    date_window_days: float = DEFAULT_DATE_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> IngestResult:
    """
    Store a crawled record, resolving duplicates against the active catalog.

    A duplicate is stored inactive with ``duplicate_of`` pointing at the
    canonical record. When the newcomer is the better copy, the previously
    active record is retired instead.
    """
    at = now or now_utc()

    existing = store.get(record.job_id)
    if existing is not None and not existing.is_active:
        # Known retired record: refresh its content, keep its lifecycle state
        store.upsert(record)
        return IngestResult(
            job_id=record.job_id,
            stored=True,
            is_duplicate=existing.deactivation_reason == DeactivationReason.DUPLICATE.value,
            canonical_id=existing.duplicate_of or record.job_id,
            reason=existing.deactivation_reason,
        )

    scope = candidates_scope or same_company_scope(store)
    check = check_duplicate(record, scope(record), similarity_threshold, date_window_days)

    if not check.is_duplicate:
        store.upsert(record)
        return IngestResult(job_id=record.job_id, stored=True, canonical_id=record.job_id)

    matched = check.matched
    canonical = choose_best_duplicate([matched, record])

    store.upsert(record)
    if canonical is record:
        store.set_active_flag(
            matched.job_id, False, DeactivationReason.DUPLICATE.value, at,
            duplicate_of=record.job_id,
        )
        logger.info("Record %s replaces duplicate %s", record.job_id, matched.job_id)
    else:
        store.set_active_flag(
            record.job_id, False, DeactivationReason.DUPLICATE.value, at,
            duplicate_of=matched.job_id,
        )
        logger.debug("Record %s is a duplicate of %s", record.job_id, matched.job_id)

    return IngestResult(
        job_id=record.job_id,
        stored=True,
        is_duplicate=True,
        canonical_id=canonical.job_id,
        reason=check.reason,
    )


@dataclass
class DedupeSweepResult:
    """Summary of a whole-catalog duplicate sweep."""
    scanned: int = 0
    groups: int = 0  # clusters with more than one member
    duplicates: int = 0
    deactivated: int = 0
    failed: int = 0
    pairs: List[Tuple[str, str]] = field(default_factory=list)  # (retired, canonical)


def _cluster(
    records: List[JobRecord],
    similarity_threshold: float,
    date_window_days: float,
) -> List[List[JobRecord]]:
    """
    Group records into connected components of the duplicate relation.

    A record linking two otherwise distinct postings pulls both into one
    cluster, so a cluster's canonical is never a duplicate of another
    cluster's canonical.
    """
    parent = list(range(len(records)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i, record in enumerate(records):
        for j in range(i):
            root_i, root_j = find(i), find(j)
            if root_i == root_j:
                continue
            check = check_duplicate(record, [records[j]], similarity_threshold, date_window_days)
            if check.is_duplicate:
                parent[root_i] = root_j

    clusters: Dict[int, List[JobRecord]] = {}
    for i, record in enumerate(records):
        clusters.setdefault(find(i), []).append(record)
    return list(clusters.values())


def dedup_sweep(
    store: JobStore,
    candidates_scope: Optional[GroupKey] = None,
    dry_run: bool = False,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    date_window_days: float = DEFAULT_DATE_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> DedupeSweepResult:
    """
    Retire duplicates among the currently active records.

    ``candidates_scope`` maps a record to its group key (default: company
    equivalence class); only records sharing a key are compared.
    """
    at = now or now_utc()
    group_key = candidates_scope or _group_by_company
    result = DedupeSweepResult()

    groups: Dict[str, List[JobRecord]] = {}
    for record in store.list_active():
        result.scanned += 1
        groups.setdefault(group_key(record), []).append(record)

    for records in groups.values():
        if len(records) < 2:
            continue

        for cluster in _cluster(records, similarity_threshold, date_window_days):
            if len(cluster) < 2:
                continue

            result.groups += 1
            canonical = choose_best_duplicate(cluster)

            for record in cluster:
                if record is canonical:
                    continue
                result.duplicates += 1
                result.pairs.append((record.job_id, canonical.job_id))

                if dry_run:
                    continue
                try:
                    store.set_active_flag(
                        record.job_id, False, DeactivationReason.DUPLICATE.value, at,
                        duplicate_of=canonical.job_id,
                    )
                    result.deactivated += 1
                except Exception:
                    logger.exception("Failed to retire duplicate %s", record.job_id)
                    result.failed += 1

    logger.info(
        "Dedup sweep: scanned=%d groups=%d duplicates=%d deactivated=%d failed=%d%s",
        result.scanned, result.groups, result.duplicates,
        result.deactivated, result.failed, " (dry run)" if dry_run else "",
    )
    return result
