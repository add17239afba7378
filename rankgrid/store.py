"""SQLite persistence for scan jobs and usage allowances."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List

from .scan_job import ScanJob

logger = logging.getLogger(__name__)


class ScanNotFoundError(LookupError):
    pass


class UsageAllowanceError(RuntimeError):
    pass


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class ScanStore:
    """Authoritative record of every ScanJob.

    Writes come from the orchestrator that owns a job; readers always get a
    freshly deserialized copy, never the live object.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            logger.debug("WAL journal mode unavailable for %s", self.db_path)
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            logger.debug("synchronous=NORMAL unavailable for %s", self.db_path)

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scan_jobs (
                id TEXT PRIMARY KEY,
                status TEXT,
                business_name TEXT,
                payload_json TEXT,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scan_credits (
                account_id TEXT PRIMARY KEY,
                remaining INTEGER,
                updated_at TEXT
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # --- jobs ---

    def save_job(self, job: ScanJob) -> None:
        payload = json.dumps(job.to_dict(), sort_keys=True)
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT INTO scan_jobs (id, status, business_name, payload_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    payload_json = excluded.payload_json,
                    updated_at = excluded.updated_at
                """,
                (job.id, job.status.value, job.business.name, payload, job.created_at, utc_now_iso()),
            )
            self.conn.commit()

    def get_job(self, job_id: str) -> ScanJob:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT payload_json FROM scan_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        if not row:
            raise ScanNotFoundError(f"Scan not found: {job_id}")
        return ScanJob.from_dict(json.loads(row["payload_json"]))

    def list_jobs(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                SELECT id, status, business_name, created_at, updated_at
                FROM scan_jobs ORDER BY created_at DESC, rowid DESC LIMIT ?
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    # --- usage allowance ---

    def get_credits(self, account_id: str) -> int:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("SELECT remaining FROM scan_credits WHERE account_id = ?", (account_id,))
            row = cur.fetchone()
        return int(row["remaining"]) if row else 0

    def adjust_credits(self, account_id: str, delta: int) -> int:
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                """
                INSERT INTO scan_credits (account_id, remaining, updated_at)
                VALUES (?, MAX(0, ?), ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    remaining = MAX(0, remaining + ?),
                    updated_at = excluded.updated_at
                """,
                (account_id, delta, utc_now_iso(), delta),
            )
            self.conn.commit()
        return self.get_credits(account_id)


class ScanCredits:
    """Usage allowance for one account; one unit is spent per completed scan."""

    def __init__(self, store: ScanStore, account_id: str) -> None:
        self.store = store
        self.account_id = account_id

    def remaining(self) -> int:
        return self.store.get_credits(self.account_id)

    def ensure_available(self, units: int = 1) -> None:
        remaining = self.remaining()
        if remaining < units:
            raise UsageAllowanceError(
                f"Account {self.account_id} has {remaining} scan credits; {units} required"
            )

    def consume(self, units: int = 1) -> int:
        remaining = self.store.adjust_credits(self.account_id, -int(units))
        logger.info("Consumed %s scan credit(s) for %s; %s left", units, self.account_id, remaining)
        return remaining

    def grant(self, units: int) -> int:
        if units <= 0:
            raise ValueError("units must be positive")
        return self.store.adjust_credits(self.account_id, int(units))
