from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, make_record
from jobcurator.dedupe import (
    DedupeEngine,
    check_duplicate,
    choose_best_duplicate,
    dedup_sweep,
    generate_dedup_key,
    ingest_record,
    source_priority,
)
from jobcurator.storage.sqlite import JobDatabase


def _pair(**second):
    first = make_record(title="Sr. Solidity Engineer", company="Acme Inc.", location="Seoul")
    defaults = dict(
        title="Senior Solidity Developer",
        company="ACME",
        location="Seoul, Korea",
        posted_date=NOW - timedelta(days=3),
        source="web3.career",
    )
    defaults.update(second)
    return first, make_record(**defaults)


# ---- check_duplicate ----

def test_check_duplicate_after_synonym_canonicalization() -> None:
    new, existing = _pair()
    check = check_duplicate(new, [existing])
    assert check.is_duplicate
    assert check.matched is existing
    assert check.similarity == 1.0
    assert check.reason


def test_check_duplicate_requires_same_company() -> None:
    new, existing = _pair(company="Globex", title="Sr. Solidity Engineer", location="Seoul")
    assert not check_duplicate(new, [existing]).is_duplicate


def test_check_duplicate_requires_same_location() -> None:
    new, existing = _pair(location="Singapore")
    assert not check_duplicate(new, [existing]).is_duplicate


def test_check_duplicate_date_window() -> None:
    new, existing = _pair(posted_date=NOW - timedelta(days=10))
    assert not check_duplicate(new, [existing]).is_duplicate
    assert check_duplicate(new, [existing], date_window_days=14).is_duplicate


def test_check_duplicate_skips_date_filter_when_a_date_is_missing() -> None:
    new, existing = _pair(posted_date=None)
    assert check_duplicate(new, [existing]).is_duplicate


def test_check_duplicate_below_title_threshold() -> None:
    new, existing = _pair(title="Solidity Auditor")
    assert not check_duplicate(new, [existing]).is_duplicate


def test_check_duplicate_is_first_match() -> None:
    new, first = _pair()
    _, second = _pair(source="lever")
    check = check_duplicate(new, [first, second])
    assert check.matched is first


def test_check_duplicate_ignores_the_record_itself() -> None:
    record = make_record()
    assert not check_duplicate(record, [record]).is_duplicate


def test_check_duplicate_with_no_candidates() -> None:
    check = check_duplicate(make_record(), [])
    assert not check.is_duplicate
    assert check.matched is None
    assert check.similarity == 0.0


# ---- canonical choice ----

def test_source_priority() -> None:
    assert source_priority("greenhouse") == 100
    assert source_priority("Web3.Career") == 50
    assert source_priority("priority:lever") == 100
    assert source_priority("my-blog") == 0
    assert source_priority(None) == 0


def test_choose_best_duplicate_prefers_source_priority() -> None:
    greenhouse = make_record(source="greenhouse", description="short")
    web3 = make_record(source="web3.career", description="a much longer description")
    assert choose_best_duplicate([web3, greenhouse]) is greenhouse


def test_choose_best_duplicate_tie_breaks_on_description_length() -> None:
    short = make_record(source="lever", description="short")
    long = make_record(source="ashby", description="long enough to win")
    assert choose_best_duplicate([short, long]) is long


def test_choose_best_duplicate_rejects_empty_group() -> None:
    with pytest.raises(ValueError):
        choose_best_duplicate([])


def test_generate_dedup_key() -> None:
    record = make_record(
        company="Acme Inc.",
        title="Sr. Solidity Engineer II - Acme",
        location="Seoul, Korea",
    )
    assert generate_dedup_key(record) == "acme|senior solidity engineer|seoul"


# ---- in-memory batches ----

def test_dedupe_engine_keeps_the_better_copy() -> None:
    web3 = make_record(source="web3.career", title="Sr. Solidity Developer")
    greenhouse = make_record(source="greenhouse")
    other = make_record(company="Globex")

    result = DedupeEngine().dedupe([web3, greenhouse, other])

    assert result.unique_records == [greenhouse, other]
    assert result.duplicates_removed == 1
    assert result.pairs == [(web3.job_id, greenhouse.job_id)]


def test_dedupe_engine_never_replaces_existing_records() -> None:
    existing = make_record(source="web3.career")
    incoming = make_record(source="greenhouse")

    result = DedupeEngine().dedupe([incoming], existing_records=[existing])

    assert result.unique_records == []
    assert result.duplicates_by_key == 1
    assert result.pairs == [(incoming.job_id, existing.job_id)]


# ---- ingest gate ----

def test_ingest_retires_the_weaker_existing_record(db: JobDatabase) -> None:
    web3 = make_record(source="web3.career")
    greenhouse = make_record(source="greenhouse", title="Sr. Solidity Developer")

    assert not ingest_record(db, web3, now=NOW).is_duplicate
    result = ingest_record(db, greenhouse, now=NOW)

    assert result.is_duplicate
    assert result.canonical_id == greenhouse.job_id
    old = db.get(web3.job_id)
    assert not old.is_active
    assert old.deactivation_reason == "duplicate"
    assert old.duplicate_of == greenhouse.job_id
    assert old.deactivated_at == NOW
    assert db.get(greenhouse.job_id).is_active


def test_ingest_stores_the_weaker_newcomer_inactive(db: JobDatabase) -> None:
    greenhouse = make_record(source="greenhouse")
    web3 = make_record(source="web3.career", title="Sr. Solidity Developer")

    ingest_record(db, greenhouse, now=NOW)
    result = ingest_record(db, web3, now=NOW)

    assert result.is_duplicate
    assert result.canonical_id == greenhouse.job_id
    stored = db.get(web3.job_id)
    assert stored is not None
    assert not stored.is_active
    assert stored.duplicate_of == greenhouse.job_id
    assert db.get(greenhouse.job_id).is_active


def test_ingest_recrawl_of_same_record_is_not_a_duplicate(db: JobDatabase) -> None:
    record = make_record()
    ingest_record(db, record, now=NOW)
    again = ingest_record(db, make_record(url=record.url, description="updated"), now=NOW)

    assert not again.is_duplicate
    assert db.get(record.job_id).description == "updated"
    assert db.get_job_count() == 1


def test_ingest_keeps_retired_records_retired(db: JobDatabase) -> None:
    record = make_record()
    ingest_record(db, record, now=NOW)
    db.set_active_flag(record.job_id, False, "broken_url", NOW)

    result = ingest_record(db, make_record(url=record.url), now=NOW)

    assert result.reason == "broken_url"
    assert not db.get(record.job_id).is_active


def test_ingest_with_custom_scope(db: JobDatabase) -> None:
    first = make_record()
    second = make_record(title="Sr. Solidity Developer")
    ingest_record(db, first, now=NOW)

    result = ingest_record(db, second, candidates_scope=lambda r: [], now=NOW)

    assert not result.is_duplicate
    assert db.get(first.job_id).is_active
    assert db.get(second.job_id).is_active


# ---- sweep ----

def _seed_duplicates(db: JobDatabase):
    web3 = make_record(source="web3.career", title="Sr. Solidity Developer")
    greenhouse = make_record(source="greenhouse")
    remoteok = make_record(source="remoteok", title="Senior Solidity Programmer")
    other = make_record(company="Globex", title="Data Engineer")
    for record in (web3, greenhouse, remoteok, other):
        db.upsert(record)
    return web3, greenhouse, remoteok, other


def test_dedup_sweep_retires_all_but_the_canonical(db: JobDatabase) -> None:
    web3, greenhouse, remoteok, other = _seed_duplicates(db)

    result = dedup_sweep(db, now=NOW)

    assert result.scanned == 4
    assert result.groups == 1
    assert result.duplicates == 2
    assert result.deactivated == 2
    assert result.failed == 0
    assert sorted(result.pairs) == sorted([
        (web3.job_id, greenhouse.job_id),
        (remoteok.job_id, greenhouse.job_id),
    ])
    active_ids = {r.job_id for r in db.list_active()}
    assert active_ids == {greenhouse.job_id, other.job_id}
    assert db.get(remoteok.job_id).duplicate_of == greenhouse.job_id


def _seed_linked_chain(db: JobDatabase):
    """Newest and oldest are 10 days apart; the middle record duplicates both."""
    newest = make_record(company="Initech", source="jobboard", posted_date=NOW)
    oldest = make_record(company="Initech", source="jobboard", posted_date=NOW - timedelta(days=10))
    middle = make_record(company="Initech", source="greenhouse", posted_date=NOW - timedelta(days=5))
    for record in (newest, oldest, middle):
        db.upsert(record)
    return newest, oldest, middle


def test_dedup_sweep_leaves_no_active_duplicates(db: JobDatabase) -> None:
    _seed_duplicates(db)
    _seed_linked_chain(db)
    dedup_sweep(db, now=NOW)

    active = db.list_active()
    for record in active:
        assert not check_duplicate(record, active).is_duplicate


def test_dedup_sweep_merges_clusters_linked_by_one_record(db: JobDatabase) -> None:
    newest, oldest, middle = _seed_linked_chain(db)
    assert not check_duplicate(newest, [oldest]).is_duplicate

    result = dedup_sweep(db, now=NOW)

    assert result.groups == 1
    assert sorted(result.pairs) == sorted([
        (newest.job_id, middle.job_id),
        (oldest.job_id, middle.job_id),
    ])
    assert [r.job_id for r in db.list_active()] == [middle.job_id]


def test_dedup_sweep_dry_run_writes_nothing(db: JobDatabase) -> None:
    _seed_duplicates(db)

    result = dedup_sweep(db, dry_run=True, now=NOW)

    assert result.duplicates == 2
    assert result.deactivated == 0
    assert len(db.list_active()) == 4


class FlakyDatabase(JobDatabase):
    def __init__(self, db_path: str, fail_ids):
        super().__init__(db_path)
        self.fail_ids = set(fail_ids)

    def set_active_flag(self, job_id, active, reason, at, duplicate_of=None):
        if job_id in self.fail_ids:
            raise RuntimeError("write failed")
        super().set_active_flag(job_id, active, reason, at, duplicate_of)


def test_dedup_sweep_continues_after_a_failed_write(tmp_path) -> None:
    web3 = make_record(source="web3.career", title="Sr. Solidity Developer")
    greenhouse = make_record(source="greenhouse")
    remoteok = make_record(source="remoteok", title="Senior Solidity Programmer")
    db = FlakyDatabase(str(tmp_path / "flaky.db"), fail_ids=[web3.job_id])
    for record in (web3, greenhouse, remoteok):
        db.upsert(record)

    result = dedup_sweep(db, now=NOW)

    assert result.failed == 1
    assert result.deactivated == 1
    assert not db.get(remoteok.job_id).is_active
    db.close()
