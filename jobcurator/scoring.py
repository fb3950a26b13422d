"""
Deterministic featured-placement scoring.

Scores are integers built from four components: notable backers (VC tiers),
posting recency, salary band and employment type. Pure functions, no I/O;
the maximum achievable score is 175.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

from jobcurator.models import JobRecord, now_utc, parse_date


VC_TIER1: Tuple[str, ...] = (
    "a16z", "Paradigm", "Sequoia", "Polychain", "Hashed", "Binance", "Coinbase Ventures",
)
VC_TIER2: Tuple[str, ...] = (
    "Dragonfly", "Pantera", "Multicoin", "Lightspeed", "Framework", "Tiger Global",
)
VC_TIER3: Tuple[str, ...] = (
    "Haun", "Hack VC", "Electric Capital", "Animoca", "1kx", "Kakao",
)


@dataclass(frozen=True)
class Weights:
    vc_tier1: int = 40
    vc_tier2: int = 25
    vc_tier3: int = 10
    vc_tier_cap: int = 2
    recency_max_points: int = 50
    recency_days: int = 30
    salary_high: int = 30  # >= 200k
    salary_mid: int = 20  # >= 100k
    salary_low: int = 10  # >= 50k
    full_time: int = 15
    part_time: int = 8
    contract: int = 5


WEIGHTS = Weights()

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")


@dataclass(frozen=True)
class ScoreBreakdown:
    vc: int
    recency: int
    salary: int
    employment: int

    @property
    def total(self) -> int:
        return self.vc + self.recency + self.salary + self.employment


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def count_tier_matches(backers: Iterable[str], tier: Sequence[str]) -> int:
    """
    Count backer entries naming any member of the tier.

    Each backer string counts at most once per tier; repeated strings each count.
    """
    members = [m.lower() for m in tier]
    count = 0
    for backer in backers or []:
        if not isinstance(backer, str):
            continue
        lowered = backer.lower()
        if any(member in lowered for member in members):
            count += 1
    return count


def vc_points(backers: Iterable[str]) -> int:
    backers = list(backers or [])
    points = 0
    for tier, weight in (
        (VC_TIER1, WEIGHTS.vc_tier1),
        (VC_TIER2, WEIGHTS.vc_tier2),
        (VC_TIER3, WEIGHTS.vc_tier3),
    ):
        points += min(count_tier_matches(backers, tier), WEIGHTS.vc_tier_cap) * weight
    return points


def recency_points(posted_date, now: Optional[datetime] = None) -> int:
    """Linear decay from 50 points when just posted to 0 at 30 days."""
    posted = parse_date(posted_date)
    if posted is None:
        return 0
    now = parse_date(now) or now_utc()

    age_days = max((now - posted).total_seconds() / 86400, 0.0)
    if age_days > WEIGHTS.recency_days:
        return 0
    return _round_half_up(WEIGHTS.recency_max_points * (1 - age_days / WEIGHTS.recency_days))


def parse_salary_number(salary: Optional[str]) -> float:
    """
    Extract a comparable yearly figure from free text.

    "$150,000 - $200,000" -> 200000, "150-180" -> 180000.
    """
    if not isinstance(salary, str) or not salary:
        return 0.0
    numbers = []
    for match in _NUMBER_RE.findall(salary):
        try:
            numbers.append(float(match.replace(",", "")))
        except ValueError:
            continue
    if not numbers:
        return 0.0
    highest = max(numbers)
    return highest * 1000 if highest < 1000 else highest


def salary_points(record: JobRecord) -> int:
    if record.salary_max is not None:
        value = record.salary_max
    elif record.salary_min is not None:
        value = record.salary_min
    else:
        value = parse_salary_number(record.salary)

    if value >= 200_000:
        return WEIGHTS.salary_high
    if value >= 100_000:
        return WEIGHTS.salary_mid
    if value >= 50_000:
        return WEIGHTS.salary_low
    return 0


def employment_points(employment_type: Optional[str]) -> int:
    job_type = (employment_type or "").lower()
    if "full" in job_type:
        return WEIGHTS.full_time
    if "part" in job_type:
        return WEIGHTS.part_time
    if "contract" in job_type:
        return WEIGHTS.contract
    return 0


def score_breakdown(record: JobRecord, now: Optional[datetime] = None) -> ScoreBreakdown:
    """Compute the four score components for a record."""
    return ScoreBreakdown(
        vc=vc_points(record.backers),
        recency=recency_points(record.posted_date, now),
        salary=salary_points(record),
        employment=employment_points(record.employment_type),
    )


def compute_score(record: JobRecord, now: Optional[datetime] = None) -> int:
    """Featured score of a record (never negative)."""
    return score_breakdown(record, now).total
