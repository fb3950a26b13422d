"""
Core data models for JobCurator.

Provides:
- JobRecord: one crawled job posting as it lives in the catalog
- DeactivationReason: why a record's active flag was flipped off
- Date/text helpers shared by the normalizer, scorer and store
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ----------------------------- Enums -----------------------------

class DeactivationReason(str, Enum):
    """Reasons written to ``deactivation_reason`` when a record is retired."""
    DEADLINE_PASSED = "deadline_passed"
    BROKEN_URL = "broken_url"
    CLOSED_TEXT = "closed_text"
    CONNECTION_FAILED = "connection_failed"
    DUPLICATE = "duplicate"

    @staticmethod
    def expired_after(days: int) -> str:
        """Reason used by the max-age rule, e.g. ``expired_60_days``."""
        return f"expired_{int(days)}_days"


# Reasons a later liveness probe is allowed to reverse.
RESTORABLE_REASONS = (
    DeactivationReason.BROKEN_URL.value,
    DeactivationReason.CLOSED_TEXT.value,
    DeactivationReason.CONNECTION_FAILED.value,
)


# ----------------------------- Utilities -----------------------------

def normalize_text(s: Any) -> str:
    """Collapse whitespace and strip. Non-strings become ''."""
    if not isinstance(s, str):
        return ""
    return re.sub(r"\s+", " ", s).strip()


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a datetime, date, ISO string or common human date into an aware UTC datetime.
    Returns None if parsing fails.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_timestamp(value)
    if not isinstance(value, str):
        return None

    date_str = normalize_text(value)
    if not date_str:
        return None

    try:
        return parse_date(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
    except ValueError:
        pass

    formats = [
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%d",
        "%d/%m/%Y",
        "%m/%d/%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
        "%d %b %Y",
    ]
    for fmt in formats:
        try:
            dt = datetime.strptime(date_str, fmt)
            return parse_date(dt)
        except ValueError:
            continue

    # Unix timestamp (seconds or milliseconds)
    try:
        return _from_timestamp(int(date_str))
    except ValueError:
        return None


def _from_timestamp(ts: float) -> Optional[datetime]:
    if ts > 1e12:  # milliseconds
        ts = ts / 1000
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as a sortable UTC ISO string."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def now_utc() -> datetime:
    """Current UTC datetime."""
    return datetime.now(timezone.utc)


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [normalize_text(v) for v in value if isinstance(v, str) and normalize_text(v)]


# Crawler payloads arrive in camelCase; the catalog is snake_case.
_FIELD_ALIASES = {
    "id": "job_id",
    "jobId": "job_id",
    "postedDate": "posted_date",
    "salaryMin": "salary_min",
    "salaryMax": "salary_max",
    "employmentType": "employment_type",
    "type": "employment_type",
    "isActive": "is_active",
    "featuredScore": "featured_score",
    "featuredPinned": "featured_pinned",
    "isFeatured": "is_featured",
    "featuredAt": "featured_at",
    "deactivatedAt": "deactivated_at",
    "deactivationReason": "deactivation_reason",
    "duplicateOf": "duplicate_of",
    "lastValidated": "last_validated_at",
}

_DATE_FIELDS = (
    "posted_date",
    "deadline",
    "featured_at",
    "deactivated_at",
    "last_validated_at",
    "first_seen_at",
    "last_seen_at",
)


# ----------------------------- JobRecord -----------------------------

@dataclass
class JobRecord:
    """
    One job posting as emitted by a crawler and kept in the catalog.
    """

    # Identity
    job_id: str = ""
    source: str = ""  # crawler identity, e.g. "greenhouse", "web3.career"
    url: str = ""

    # Core job info
    title: str = ""
    company: str = ""
    location: str = ""
    description: str = ""

    # Compensation / type
    salary: str = ""  # free text, e.g. "$150k - $200k"
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    employment_type: str = ""

    # Investors, in crawler order (repeats allowed)
    backers: List[str] = field(default_factory=list)

    # Dates
    posted_date: Optional[datetime] = None
    deadline: Optional[datetime] = None

    # Lifecycle
    is_active: bool = True
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None
    duplicate_of: Optional[str] = None
    last_validated_at: Optional[datetime] = None

    # Featured placement
    featured_score: int = 0
    featured_pinned: bool = False
    is_featured: bool = False
    featured_at: Optional[datetime] = None

    # Maintained by the store
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    def __post_init__(self):
        """Normalize fields after initialization."""
        self.normalize()

    def normalize(self) -> None:
        """Coerce loosely typed crawler values into the declared field types."""
        self.title = normalize_text(self.title)
        self.company = normalize_text(self.company)
        self.location = normalize_text(self.location)
        self.source = normalize_text(self.source)
        self.url = self.url.strip() if isinstance(self.url, str) else ""
        self.description = self.description if isinstance(self.description, str) else ""
        self.salary = normalize_text(self.salary)
        self.employment_type = normalize_text(self.employment_type)
        self.salary_min = _as_float(self.salary_min)
        self.salary_max = _as_float(self.salary_max)
        self.backers = _as_str_list(self.backers)
        self.is_active = bool(self.is_active)
        self.featured_pinned = bool(self.featured_pinned)
        self.is_featured = bool(self.is_featured)
        try:
            self.featured_score = int(self.featured_score or 0)
        except (TypeError, ValueError):
            self.featured_score = 0

        for name in _DATE_FIELDS:
            setattr(self, name, parse_date(getattr(self, name)))

        if not self.job_id:
            self.job_id = self.compute_job_id()

    def compute_job_id(self) -> str:
        """
        Compute a stable job ID.
        Uses source + URL when a URL is known, otherwise hashes the descriptive fields.
        """
        if self.url:
            key = f"{self.source.lower()}|{self.url}"
        else:
            key = "|".join([
                self.source.lower(),
                self.company.lower(),
                self.title.lower(),
                self.location.lower(),
            ])
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        """Build a record from a crawler/store payload, accepting camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _FIELD_ALIASES.get(key, key)
            if name in known and name not in kwargs:
                kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary for storage/export."""
        d: Dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in _DATE_FIELDS:
            d[name] = to_iso(d[name]) or ""
        d["backers"] = ", ".join(self.backers)
        return d

    @classmethod
    def get_export_columns(cls) -> List[str]:
        """Get column order for CSV export."""
        return [
            "job_id", "source", "title", "company", "location",
            "posted_date", "deadline",
            "salary", "salary_min", "salary_max", "employment_type",
            "backers",
            "is_active", "deactivation_reason", "deactivated_at", "duplicate_of",
            "featured_score", "featured_pinned", "is_featured", "featured_at",
            "last_validated_at", "url",
        ]
