"""
SQLite-based catalog storage with upserts and lifecycle flags.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from jobcurator.models import JobRecord, now_utc, to_iso
from jobcurator.normalize import company_key as make_company_key
from jobcurator.storage.base import CatalogStats, JobStore

logger = logging.getLogger(__name__)

_SELECT = "SELECT * FROM jobs"


class JobDatabase(JobStore):
    """
    SQLite database for the job catalog.
    """

    def __init__(self, db_path: str):
        """
        Initialize the database.

        Args:
            db_path: Path to SQLite database file (":memory:" for a throwaway store)
        """
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def __enter__(self) -> "JobDatabase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (creating if needed)."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._lock:
            conn = self._get_conn()
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    url TEXT,

                    title TEXT NOT NULL,
                    company TEXT NOT NULL,
                    company_key TEXT,
                    location TEXT,
                    description TEXT,

                    salary TEXT,
                    salary_min REAL,
                    salary_max REAL,
                    employment_type TEXT,
                    backers TEXT,  -- JSON array

                    posted_date TEXT,
                    deadline TEXT,

                    is_active INTEGER NOT NULL DEFAULT 1,
                    deactivated_at TEXT,
                    deactivation_reason TEXT,
                    duplicate_of TEXT,
                    last_validated_at TEXT,

                    featured_score INTEGER NOT NULL DEFAULT 0,
                    featured_pinned INTEGER NOT NULL DEFAULT 0,
                    is_featured INTEGER NOT NULL DEFAULT 0,
                    featured_at TEXT,

                    first_seen_at TEXT NOT NULL,
                    last_seen_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_active ON jobs(is_active);
                CREATE INDEX IF NOT EXISTS idx_jobs_company_key ON jobs(company_key);
                CREATE INDEX IF NOT EXISTS idx_jobs_posted ON jobs(posted_date);
            """)

            # Additive migrations for databases created by older versions
            cols = {row["name"] for row in conn.execute("PRAGMA table_info(jobs)").fetchall()}
            for name, ddl in (
                ("deadline", "TEXT"),
                ("duplicate_of", "TEXT"),
                ("last_validated_at", "TEXT"),
                ("is_featured", "INTEGER NOT NULL DEFAULT 0"),
            ):
                if name not in cols:
                    logger.info("Migrating jobs table: adding column %s", name)
                    conn.execute(f"ALTER TABLE jobs ADD COLUMN {name} {ddl}")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_validated ON jobs(last_validated_at)")

            conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # ---- Row mapping ----

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> JobRecord:
        data: Dict[str, Any] = dict(row)
        data["backers"] = json.loads(data["backers"]) if data.get("backers") else []
        return JobRecord.from_dict(data)

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[JobRecord]:
        with self._lock:
            conn = self._get_conn()
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
            return cursor.rowcount

    # ---- Reads ----

    def list_active(self, company_key: Optional[str] = None) -> List[JobRecord]:
        if company_key is None:
            return self._query(f"{_SELECT} WHERE is_active = 1 ORDER BY rowid")
        return self._query(
            f"{_SELECT} WHERE is_active = 1 AND company_key = ? ORDER BY rowid",
            (company_key,),
        )

    def list_inactive(
        self,
        reasons: Optional[Iterable[str]] = None,
        include_unknown_reason: bool = False,
        limit: Optional[int] = None,
        validated_before: Optional[datetime] = None,
    ) -> List[JobRecord]:
        sql = f"{_SELECT} WHERE is_active = 0"
        params: List[Any] = []

        if validated_before is not None:
            sql += " AND (last_validated_at IS NULL OR last_validated_at < ?)"
            params.append(to_iso(validated_before))

        if reasons is not None:
            reasons = list(reasons)
            clauses = []
            if reasons:
                clauses.append(f"deactivation_reason IN ({', '.join('?' * len(reasons))})")
                params.extend(reasons)
            if include_unknown_reason:
                clauses.append("deactivation_reason IS NULL OR deactivation_reason = ''")
            if not clauses:
                return []
            sql += " AND (" + " OR ".join(clauses) + ")"

        sql += (
            " ORDER BY last_validated_at IS NOT NULL, last_validated_at,"
            " posted_date IS NULL, posted_date DESC, rowid"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return self._query(sql, params)

    def list_for_validation(self, validated_before: datetime, limit: int) -> List[JobRecord]:
        return self._query(
            f"""{_SELECT}
                WHERE is_active = 1
                  AND (last_validated_at IS NULL OR last_validated_at < ?)
                ORDER BY posted_date IS NULL, posted_date ASC, rowid
                LIMIT ?""",
            (to_iso(validated_before), int(limit)),
        )

    def get(self, job_id: str) -> Optional[JobRecord]:
        records = self._query(f"{_SELECT} WHERE job_id = ?", (job_id,))
        return records[0] if records else None

    def get_job_count(self) -> int:
        """Get total record count."""
        with self._lock:
            conn = self._get_conn()
            result = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
            return result[0] if result else 0

    # ---- Writes ----

    def upsert(self, record: JobRecord) -> Tuple[bool, bool]:
        """
        Insert or update a record.

        Updates refresh crawled content only; lifecycle, featured and
        validation state of an existing row is left alone.

        Returns:
            (is_new, was_updated) tuple
        """
        now = to_iso(now_utc())
        backers_json = json.dumps(record.backers)

        with self._lock:
            conn = self._get_conn()
            existing = conn.execute(
                "SELECT job_id FROM jobs WHERE job_id = ?", (record.job_id,)
            ).fetchone()

            if existing:
                conn.execute("""
                    UPDATE jobs SET
                        source = ?,
                        url = ?,
                        title = ?,
                        company = ?,
                        company_key = ?,
                        location = ?,
                        description = ?,
                        salary = ?,
                        salary_min = ?,
                        salary_max = ?,
                        employment_type = ?,
                        backers = ?,
                        posted_date = COALESCE(?, posted_date),
                        deadline = COALESCE(?, deadline),
                        last_seen_at = ?
                    WHERE job_id = ?
                """, (
                    record.source, record.url,
                    record.title, record.company, make_company_key(record.company),
                    record.location, record.description,
                    record.salary, record.salary_min, record.salary_max,
                    record.employment_type, backers_json,
                    to_iso(record.posted_date), to_iso(record.deadline),
                    now,
                    record.job_id,
                ))
                conn.commit()
                return False, True

            conn.execute("""
                INSERT INTO jobs (
                    job_id, source, url,
                    title, company, company_key, location, description,
                    salary, salary_min, salary_max, employment_type, backers,
                    posted_date, deadline,
                    is_active, deactivated_at, deactivation_reason, duplicate_of,
                    last_validated_at,
                    featured_score, featured_pinned, is_featured, featured_at,
                    first_seen_at, last_seen_at
                ) VALUES (
                    ?, ?, ?,
                    ?, ?, ?, ?, ?,
                    ?, ?, ?, ?, ?,
                    ?, ?,
                    ?, ?, ?, ?,
                    ?,
                    ?, ?, ?, ?,
                    ?, ?
                )
            """, (
                record.job_id, record.source, record.url,
                record.title, record.company, make_company_key(record.company),
                record.location, record.description,
                record.salary, record.salary_min, record.salary_max,
                record.employment_type, backers_json,
                to_iso(record.posted_date), to_iso(record.deadline),
                int(record.is_active), to_iso(record.deactivated_at),
                record.deactivation_reason, record.duplicate_of,
                to_iso(record.last_validated_at),
                record.featured_score, int(record.featured_pinned),
                int(record.is_featured), to_iso(record.featured_at),
                to_iso(record.first_seen_at) or now, now,
            ))
            conn.commit()
            return True, False

    def upsert_many(self, records: List[JobRecord]) -> Tuple[int, int]:
        """
        Upsert multiple records.

        Returns:
            (new_count, updated_count) tuple
        """
        new_count = 0
        updated_count = 0

        for record in records:
            is_new, was_updated = self.upsert(record)
            if is_new:
                new_count += 1
            elif was_updated:
                updated_count += 1

        return new_count, updated_count

    def set_active_flag(
        self,
        job_id: str,
        active: bool,
        reason: Optional[str],
        at: datetime,
        duplicate_of: Optional[str] = None,
    ) -> None:
        if active:
            self._execute("""
                UPDATE jobs SET
                    is_active = 1,
                    deactivated_at = NULL,
                    deactivation_reason = NULL,
                    duplicate_of = NULL
                WHERE job_id = ?
            """, (job_id,))
        else:
            self._execute("""
                UPDATE jobs SET
                    is_active = 0,
                    deactivated_at = ?,
                    deactivation_reason = ?,
                    duplicate_of = ?,
                    is_featured = 0,
                    featured_at = NULL
                WHERE job_id = ? AND is_active = 1
            """, (to_iso(at), reason, duplicate_of, job_id))

    def set_featured(self, job_ids: Iterable[str], featured: bool, at: Optional[datetime]) -> int:
        ids = list(job_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" * len(ids))
        return self._execute(
            f"UPDATE jobs SET is_featured = ?, featured_at = ? WHERE job_id IN ({placeholders})",
            (int(featured), to_iso(at) if featured else None, *ids),
        )

    def set_score(self, job_id: str, score: int) -> None:
        self._execute(
            "UPDATE jobs SET featured_score = ? WHERE job_id = ?", (int(score), job_id)
        )

    def set_pinned(self, job_id: str, pinned: bool) -> None:
        """Manually pin (or unpin) a record into the featured set."""
        self._execute(
            "UPDATE jobs SET featured_pinned = ? WHERE job_id = ?", (int(pinned), job_id)
        )

    def mark_validated(self, job_id: str, at: datetime) -> None:
        self._execute(
            "UPDATE jobs SET last_validated_at = ? WHERE job_id = ?", (to_iso(at), job_id)
        )

    def deactivate_where(
        self,
        reason: str,
        at: datetime,
        deadline_before: Optional[datetime] = None,
        posted_before: Optional[datetime] = None,
    ) -> int:
        if deadline_before is None and posted_before is None:
            raise ValueError("deactivate_where needs deadline_before or posted_before")

        sql = """
            UPDATE jobs SET
                is_active = 0,
                deactivated_at = ?,
                deactivation_reason = ?,
                is_featured = 0,
                featured_at = NULL
            WHERE is_active = 1
        """
        params: List[Any] = [to_iso(at), reason]
        if deadline_before is not None:
            sql += " AND deadline IS NOT NULL AND deadline < ?"
            params.append(to_iso(deadline_before))
        if posted_before is not None:
            sql += " AND posted_date IS NOT NULL AND posted_date < ?"
            params.append(to_iso(posted_before))
        return self._execute(sql, params)

    # ---- Reporting ----

    def stats(self) -> CatalogStats:
        with self._lock:
            conn = self._get_conn()
            row = conn.execute("""
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(is_active), 0) AS active,
                    COALESCE(SUM(is_active = 1 AND is_featured = 1), 0) AS featured
                FROM jobs
            """).fetchone()
            reasons = conn.execute("""
                SELECT COALESCE(NULLIF(deactivation_reason, ''), 'unknown') AS reason,
                       COUNT(*) AS n
                FROM jobs
                WHERE is_active = 0
                GROUP BY reason
                ORDER BY n DESC, reason
            """).fetchall()

        return CatalogStats(
            total=row["total"],
            active=row["active"],
            inactive=row["total"] - row["active"],
            featured=row["featured"],
            by_reason={r["reason"]: r["n"] for r in reasons},
        )

    def export_to_csv(self, path: str, active_only: bool = False) -> int:
        """
        Export the catalog to a CSV file.

        Returns number of rows exported.
        """
        records = self.list_active() if active_only else self._query(
            f"{_SELECT} ORDER BY is_active DESC, posted_date IS NULL, posted_date DESC"
        )
        if not records:
            return 0

        df = pd.DataFrame([r.to_dict() for r in records])
        df = df[JobRecord.get_export_columns()]
        df.to_csv(path, index=False, encoding="utf-8")
        return len(df)
