from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Dict, List, Union

from aiohttp import test_utils, web

from conftest import NOW, make_record
from jobcurator.fetchers.http import LivenessProber, ProbeResult, ProbeVerdict
from jobcurator.lifecycle import expire_no_network, expire_sweep, restore_sweep
from jobcurator.storage.sqlite import JobDatabase

Outcome = Union[ProbeVerdict, ProbeResult, Exception]


class StubProber:
    """Answers probes from a url -> outcome table; unknown URLs are live."""

    def __init__(self, outcomes: Dict[str, Outcome] = None):
        self.outcomes = outcomes or {}
        self.calls: List[str] = []

    async def probe(self, url: str) -> ProbeResult:
        self.calls.append(url)
        outcome = self.outcomes.get(url, ProbeVerdict.VALID)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ProbeResult):
            return outcome
        return ProbeResult(url=url, verdict=outcome)


def expired(url: str, reason: str) -> ProbeResult:
    return ProbeResult(url=url, verdict=ProbeVerdict.EXPIRED, reason=reason)


def sweep(db: JobDatabase, prober: StubProber, **kwargs) -> object:
    kwargs.setdefault("delay_s", 0)
    return asyncio.run(expire_sweep(db, prober=prober, now=NOW, **kwargs))


def restore(db: JobDatabase, prober: StubProber, **kwargs) -> object:
    kwargs.setdefault("delay_s", 0)
    return asyncio.run(restore_sweep(db, prober=prober, now=NOW, **kwargs))


# ---- expiry ----

def test_no_network_pass(db: JobDatabase) -> None:
    past_deadline = make_record(deadline=NOW - timedelta(hours=1))
    too_old = make_record(posted_date=NOW - timedelta(days=61))
    fresh = make_record(posted_date=NOW - timedelta(days=59))
    for record in (past_deadline, too_old, fresh):
        db.upsert(record)

    assert expire_no_network(db, max_age_days=60, now=NOW) == (1, 1)
    assert db.get(past_deadline.job_id).deactivation_reason == "deadline_passed"
    assert db.get(too_old.job_id).deactivation_reason == "expired_60_days"
    assert db.get(too_old.job_id).deactivated_at == NOW
    assert db.get(fresh.job_id).is_active


def test_expire_sweep_without_network(db: JobDatabase) -> None:
    db.upsert(make_record(posted_date=NOW - timedelta(days=100)))
    db.upsert(make_record())
    prober = StubProber()

    result = sweep(db, prober, network=False)

    assert result.age_expired == 1
    assert result.reasons == {"expired_60_days": 1}
    assert result.probed == 0
    assert prober.calls == []


def test_expire_sweep_classifies_probe_results(db: JobDatabase) -> None:
    gone = make_record()
    flaky = make_record()
    live = make_record()
    closed = make_record()
    for record in (gone, flaky, live, closed):
        db.upsert(record)
    prober = StubProber({
        gone.url: expired(gone.url, "broken_url"),
        flaky.url: ProbeVerdict.UNCERTAIN,
        closed.url: expired(closed.url, "closed_text"),
    })

    result = sweep(db, prober)

    assert (result.probed, result.expired, result.valid, result.kept_uncertain) == (4, 2, 1, 1)
    assert result.reasons == {"broken_url": 1, "closed_text": 1}
    assert db.get(gone.job_id).deactivation_reason == "broken_url"
    assert db.get(closed.job_id).deactivation_reason == "closed_text"
    assert db.get(flaky.job_id).is_active
    assert db.get(live.job_id).is_active
    assert all(db.get(r.job_id).last_validated_at == NOW for r in (gone, flaky, live, closed))


def test_expire_sweep_probes_oldest_first_and_resumes(db: JobDatabase) -> None:
    undated = make_record(posted_date=None)
    newest = make_record(posted_date=NOW - timedelta(days=1))
    oldest = make_record(posted_date=NOW - timedelta(days=3))
    middle = make_record(posted_date=NOW - timedelta(days=2))
    for record in (undated, newest, oldest, middle):
        db.upsert(record)

    first = StubProber()
    sweep(db, first, probe_limit=2)
    second = StubProber()
    sweep(db, second, probe_limit=2)
    third = StubProber()
    sweep(db, third, probe_limit=2)

    assert first.calls == [oldest.url, middle.url]
    assert second.calls == [newest.url, undated.url]
    assert third.calls == []


def test_expire_sweep_revalidates_after_interval(db: JobDatabase) -> None:
    record = make_record()
    db.upsert(record)
    db.mark_validated(record.job_id, NOW - timedelta(days=8))
    prober = StubProber()

    sweep(db, prober, revalidate_after_days=7)

    assert prober.calls == [record.url]


def test_expire_sweep_continues_after_a_probe_error(db: JobDatabase) -> None:
    broken = make_record(posted_date=NOW - timedelta(days=2))
    fine = make_record(posted_date=NOW - timedelta(days=1))
    db.upsert(broken)
    db.upsert(fine)
    prober = StubProber({broken.url: RuntimeError("boom")})

    result = sweep(db, prober)

    assert result.failed == 1
    assert result.valid == 1
    assert db.get(broken.job_id).is_active
    assert db.get(broken.job_id).last_validated_at is None
    assert db.get(fine.job_id).last_validated_at == NOW


def test_expire_sweep_against_live_server(db: JobDatabase) -> None:
    """410 retires the record; 503 leaves it active."""
    app = web.Application()

    async def gone(request: web.Request) -> web.Response:
        return web.Response(status=410)

    async def unavailable(request: web.Request) -> web.Response:
        return web.Response(status=503)

    app.router.add_get("/gone", gone)
    app.router.add_get("/unavailable", unavailable)

    async def run():
        async with test_utils.TestServer(app) as server:
            gone_record = make_record(url=str(server.make_url("/gone")))
            down_record = make_record(url=str(server.make_url("/unavailable")))
            db.upsert(gone_record)
            db.upsert(down_record)
            async with LivenessProber() as prober:
                result = await expire_sweep(db, prober=prober, delay_s=0.01, now=NOW)
            return result, gone_record, down_record

    result, gone_record, down_record = asyncio.run(run())

    assert result.expired == 1
    assert result.kept_uncertain == 1
    assert db.get(gone_record.job_id).deactivation_reason == "broken_url"
    assert db.get(down_record.job_id).is_active


# ---- restore ----

def _retire(db: JobDatabase, reason, **overrides):
    record = make_record(**overrides)
    db.upsert(record)
    db.set_active_flag(record.job_id, False, reason, NOW - timedelta(days=1))
    return record


def test_restore_sweep_reactivates_live_records(db: JobDatabase) -> None:
    record = _retire(db, "broken_url")

    result = restore(db, StubProber())

    assert (result.checked, result.restored, result.still_expired, result.failed) == (1, 1, 0, 0)
    stored = db.get(record.job_id)
    assert stored.is_active
    assert stored.deactivated_at is None
    assert stored.deactivation_reason is None


def test_restore_sweep_only_reconsiders_probe_retirements(db: JobDatabase) -> None:
    broken = _retire(db, "broken_url", company="Alpha")
    closed = _retire(db, "closed_text", company="Bravo")
    refused = _retire(db, "connection_failed", company="Charlie")
    for reason in ("duplicate", "deadline_passed", "expired_60_days"):
        _retire(db, reason, company=f"Retired {reason}")
    prober = StubProber()

    result = restore(db, prober)

    assert sorted(prober.calls) == sorted([broken.url, closed.url, refused.url])
    assert result.restored == 3


def test_restore_sweep_includes_records_without_reason(db: JobDatabase) -> None:
    record = make_record(is_active=False)
    db.upsert(record)
    prober = StubProber()

    restore(db, prober)

    assert prober.calls == [record.url]
    assert db.get(record.job_id).is_active


def test_restore_sweep_leaves_still_expired_records(db: JobDatabase) -> None:
    record = _retire(db, "closed_text")
    prober = StubProber({record.url: expired(record.url, "closed_text")})

    result = restore(db, prober)

    assert result.still_expired == 1
    assert result.restored == 0
    assert db.get(record.job_id).deactivation_reason == "closed_text"


def test_restore_sweep_newest_first_with_limit(db: JobDatabase) -> None:
    old = _retire(db, "broken_url", posted_date=NOW - timedelta(days=20))
    new = _retire(db, "broken_url", posted_date=NOW - timedelta(days=2))
    prober = StubProber()

    restore(db, prober, limit=1)

    assert prober.calls == [new.url]
    assert not db.get(old.job_id).is_active


def test_restore_sweep_counts_failures(db: JobDatabase) -> None:
    record = _retire(db, "broken_url")
    prober = StubProber({record.url: RuntimeError("boom")})

    result = restore(db, prober)

    assert result.failed == 1
    assert not db.get(record.job_id).is_active


def test_restore_sweep_walks_every_record_across_runs(db: JobDatabase) -> None:
    newest = _retire(db, "broken_url", posted_date=NOW - timedelta(days=1))
    middle = _retire(db, "broken_url", posted_date=NOW - timedelta(days=2))
    oldest = _retire(db, "broken_url", posted_date=NOW - timedelta(days=3))
    outcomes = {r.url: expired(r.url, "broken_url") for r in (newest, middle, oldest)}

    first = StubProber(outcomes)
    restore(db, first, limit=2)
    second = StubProber(outcomes)
    restore(db, second, limit=2)
    third = StubProber(outcomes)
    restore(db, third, limit=2)

    assert first.calls == [newest.url, middle.url]
    assert second.calls == [oldest.url]
    assert third.calls == []
    assert db.get(oldest.job_id).last_validated_at == NOW


def test_restore_sweep_rechecks_least_recently_checked_first(db: JobDatabase) -> None:
    records = [_retire(db, "broken_url", posted_date=NOW - timedelta(days=d)) for d in (1, 2, 3)]
    outcomes = {r.url: expired(r.url, "broken_url") for r in records}
    asyncio.run(restore_sweep(db, prober=StubProber(outcomes), limit=2, delay_s=0, now=NOW))

    later = StubProber(outcomes)
    asyncio.run(restore_sweep(db, prober=later, limit=2, delay_s=0, now=NOW + timedelta(days=1)))

    assert later.calls == [records[2].url, records[0].url]


def test_restore_sweep_keeps_duplicates_of_active_records_retired(db: JobDatabase) -> None:
    retired = _retire(db, "broken_url", source="web3.career")
    canonical = make_record(source="greenhouse")
    db.upsert(canonical)

    result = restore(db, StubProber())

    assert result.kept_duplicate == 1
    assert result.restored == 0
    assert not db.get(retired.job_id).is_active
    assert db.get(retired.job_id).last_validated_at == NOW
    assert [r.job_id for r in db.list_active()] == [canonical.job_id]
