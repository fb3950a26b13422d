from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from jobcurator.models import JobRecord
from jobcurator.storage.sqlite import JobDatabase

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

_counter = itertools.count(1)


def make_record(**overrides: Any) -> JobRecord:
    """A plausible crawled record; every field can be overridden."""
    n = next(_counter)
    data: dict[str, Any] = {
        "source": "greenhouse",
        "url": f"https://boards.example.com/jobs/{n}",
        "title": "Senior Solidity Engineer",
        "company": "Acme Inc.",
        "location": "Seoul, Korea",
        "description": "Build smart contracts.",
        "posted_date": NOW,
    }
    data.update(overrides)
    return JobRecord(**data)


@pytest.fixture
def record_factory() -> Callable[..., JobRecord]:
    return make_record


@pytest.fixture
def db(tmp_path) -> JobDatabase:
    database = JobDatabase(str(tmp_path / "jobs.db"))
    yield database
    database.close()
