"""
Store interface consumed by the curation workflows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from jobcurator.models import JobRecord


@dataclass
class CatalogStats:
    """Counts over the whole catalog."""
    total: int = 0
    active: int = 0
    inactive: int = 0
    featured: int = 0
    by_reason: Dict[str, int] = field(default_factory=dict)


class JobStore(ABC):
    """
    Persistent record set behind the ingest gate and the batch sweeps.

    Write methods raise on failure; batch callers decide whether to continue.
    """

    @abstractmethod
    def list_active(self, company_key: Optional[str] = None) -> List[JobRecord]:
        """Active records, optionally restricted to one company equivalence class."""
        raise NotImplementedError

    @abstractmethod
    def list_inactive(
        self,
        reasons: Optional[Iterable[str]] = None,
        include_unknown_reason: bool = False,
        limit: Optional[int] = None,
        validated_before: Optional[datetime] = None,
    ) -> List[JobRecord]:
        """
        Inactive records, least recently validated first, then newest posted first.

        With ``validated_before``, records validated at or after it are skipped.
        """
        raise NotImplementedError

    @abstractmethod
    def list_for_validation(self, validated_before: datetime, limit: int) -> List[JobRecord]:
        """
        Active records never probed or probed before ``validated_before``.

        Oldest posted first, undated records last.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, record: JobRecord) -> Tuple[bool, bool]:
        """
        Insert or update a record's crawled content.

        Returns:
            (is_new, was_updated) tuple
        """
        raise NotImplementedError

    @abstractmethod
    def set_active_flag(
        self,
        job_id: str,
        active: bool,
        reason: Optional[str],
        at: datetime,
        duplicate_of: Optional[str] = None,
    ) -> None:
        """
        Flip a record's active flag.

        Deactivation sets ``deactivated_at``/``deactivation_reason`` together
        and only on an active record, so the first retirement is kept.
        Reactivation clears them along with ``duplicate_of``.
        """
        raise NotImplementedError

    @abstractmethod
    def set_featured(self, job_ids: Iterable[str], featured: bool, at: Optional[datetime]) -> int:
        """Set the featured flag (and ``featured_at``) on many records; returns rows touched."""
        raise NotImplementedError

    @abstractmethod
    def set_score(self, job_id: str, score: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_validated(self, job_id: str, at: datetime) -> None:
        """Stamp the liveness-probe checkpoint."""
        raise NotImplementedError

    @abstractmethod
    def deactivate_where(
        self,
        reason: str,
        at: datetime,
        deadline_before: Optional[datetime] = None,
        posted_before: Optional[datetime] = None,
    ) -> int:
        """Bulk-retire active records by deadline or posting age; returns rows retired."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> CatalogStats:
        raise NotImplementedError
