# storage.py
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from exceptions import InvalidState, NotFound, StorageError
from models import Job, JobResult, JobState

logger = logging.getLogger(__name__)

# Fixed width so that ORDER BY run_at is chronological
TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

JOB_COLUMNS = "id, name, state, script, run_at, cwd"


def to_db_time(dt):
    return dt.astimezone(timezone.utc).strftime(TIME_FORMAT)


def from_db_time(value):
    return datetime.strptime(value, TIME_FORMAT).replace(tzinfo=timezone.utc)


def path_to_bytes(path):
    return os.fsencode(path)


def bytes_to_path(raw):
    return Path(os.fsdecode(bytes(raw)))


def _row_to_job(row):
    return Job(
        id=row["id"],
        name=row["name"],
        state=JobState(row["state"]),
        script=row["script"],
        run_at=from_db_time(row["run_at"]),
        cwd=bytes_to_path(row["cwd"]),
    )


def _row_to_result(row):
    return JobResult(
        id=row["id"],
        job_id=row["job_id"],
        status=row["status"],
        stdout=row["stdout"],
        stderr=row["stderr"],
    )


class Storage:
    """SQLite-backed persistence for jobs, their results and runtime config.

    One connection is opened per Storage and kept until close(). Compound
    writes go through transaction(), which takes the write lock up front
    (BEGIN IMMEDIATE) so readers in other processes never see half of one.
    """

    def __init__(self, db_path="rat.db", busy_timeout=5.0):
        self.db_path = str(db_path)
        try:
            self.conn = sqlite3.connect(
                self.db_path,
                timeout=busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            self.conn.row_factory = sqlite3.Row

            # Readers (list, log, dashboard) run alongside the worker
            self.conn.execute("PRAGMA journal_mode=WAL;")
            self.conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

        self._lock = threading.RLock()
        self.create_schema()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        with self._lock:
            self.conn.close()

    # ---------------- Low-level helpers ----------------
    @contextmanager
    def transaction(self):
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot start transaction: {e}") from e
            try:
                yield self.conn
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(f"Transaction failed: {e}") from e
            except BaseException:
                self.conn.rollback()
                raise
            try:
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(f"Commit failed: {e}") from e

    def _fetchone(self, sql, params=()):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e

    def _fetchall(self, sql, params=()):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e

    # ---------------- Schema ----------------
    def create_schema(self):
        with self.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY,
                name TEXT,
                state INTEGER NOT NULL,
                script TEXT NOT NULL,
                run_at TEXT NOT NULL,
                cwd BLOB NOT NULL
            )
            """)
            conn.execute("""
            CREATE TABLE IF NOT EXISTS job_results (
                id INTEGER PRIMARY KEY,
                job_id INTEGER NOT NULL,
                status INTEGER,
                stdout TEXT NOT NULL,
                stderr TEXT NOT NULL
            )
            """)
            conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS job_results_job_id
            ON job_results (job_id)
            """)
            conn.execute("""
            CREATE INDEX IF NOT EXISTS jobs_state_run_at
            ON jobs (state, run_at, id)
            """)
            conn.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """)

    # ---------------- Jobs ----------------
    def insert_job(self, job):
        if job.state != JobState.QUEUED:
            raise InvalidState(job.id, job.state, "insert")
        with self.transaction() as conn:
            cur = conn.execute("""
                INSERT INTO jobs (name, state, script, run_at, cwd)
                VALUES (?, ?, ?, ?, ?)
            """, (job.name, int(JobState.QUEUED), job.script, to_db_time(job.run_at), path_to_bytes(job.cwd)))
            return cur.lastrowid

    def select_job(self, job_id):
        row = self._fetchone(f"SELECT {JOB_COLUMNS} FROM jobs WHERE id=?", (job_id,))
        return _row_to_job(row) if row else None

    def select_all_jobs(self):
        rows = self._fetchall(f"SELECT {JOB_COLUMNS} FROM jobs ORDER BY id")
        return [_row_to_job(r) for r in rows]

    def select_jobs_by_state(self, state):
        rows = self._fetchall(
            f"SELECT {JOB_COLUMNS} FROM jobs WHERE state=? ORDER BY id", (int(state),)
        )
        return [_row_to_job(r) for r in rows]

    def update_job_state(self, job, new_state, expected_state=None):
        """Persist new_state for job.

        With expected_state the write is a compare-and-swap: it only applies
        if the stored state still equals expected_state. Returns whether a
        row was changed.
        """
        with self.transaction() as conn:
            if expected_state is None:
                cur = conn.execute(
                    "UPDATE jobs SET state=? WHERE id=?", (int(new_state), job.id)
                )
            else:
                cur = conn.execute(
                    "UPDATE jobs SET state=? WHERE id=? AND state=?",
                    (int(new_state), job.id, int(expected_state)),
                )
            return cur.rowcount == 1

    def claim_job(self, job_id=None):
        """
        Atomically move one queued job to Dequeued and return it:
        - job_id given: that job, if it is still queued
        - otherwise: the queued job with the earliest run_at (lowest id on ties)
        Returns None when there is nothing to claim.
        """
        with self.transaction() as conn:
            if job_id is None:
                row = conn.execute(f"""
                    SELECT {JOB_COLUMNS} FROM jobs
                    WHERE state=?
                    ORDER BY run_at ASC, id ASC
                    LIMIT 1
                """, (int(JobState.QUEUED),)).fetchone()
            else:
                row = conn.execute(
                    f"SELECT {JOB_COLUMNS} FROM jobs WHERE id=? AND state=?",
                    (job_id, int(JobState.QUEUED)),
                ).fetchone()
            if not row:
                return None

            updated = conn.execute(
                "UPDATE jobs SET state=? WHERE id=? AND state=?",
                (int(JobState.DEQUEUED), row["id"], int(JobState.QUEUED)),
            ).rowcount
            if updated != 1:
                return None

        job = _row_to_job(row)
        job.state = JobState.DEQUEUED
        return job

    def delete_job(self, job_id):
        with self.transaction() as conn:
            row = conn.execute("SELECT state FROM jobs WHERE id=?", (job_id,)).fetchone()
            if not row:
                raise NotFound(job_id)
            state = JobState(row["state"])
            if state == JobState.RUNNING:
                raise InvalidState(job_id, state, "delete")
            conn.execute("DELETE FROM job_results WHERE job_id=?", (job_id,))
            conn.execute("DELETE FROM jobs WHERE id=?", (job_id,))

    # ---------------- Results ----------------
    def insert_job_result(self, result):
        """Store result and move its job from Running to Done in one transaction."""
        with self.transaction() as conn:
            updated = conn.execute(
                "UPDATE jobs SET state=? WHERE id=? AND state=?",
                (int(JobState.DONE), result.job_id, int(JobState.RUNNING)),
            ).rowcount
            if updated != 1:
                row = conn.execute(
                    "SELECT state FROM jobs WHERE id=?", (result.job_id,)
                ).fetchone()
                if not row:
                    raise NotFound(result.job_id)
                raise InvalidState(result.job_id, JobState(row["state"]), "save result for")

            cur = conn.execute("""
                INSERT INTO job_results (job_id, status, stdout, stderr)
                VALUES (?, ?, ?, ?)
            """, (result.job_id, result.status, result.stdout, result.stderr))
            return cur.lastrowid

    def select_job_result(self, job_id):
        row = self._fetchone(
            "SELECT id, job_id, status, stdout, stderr FROM job_results WHERE job_id=?",
            (job_id,),
        )
        return _row_to_result(row) if row else None

    # ---------------- Config helpers ----------------
    def get_config(self, key, default=None):
        row = self._fetchone("SELECT value FROM config WHERE key=?", (key,))
        return row["value"] if row else default

    def set_config(self, key, value):
        now = datetime.now(timezone.utc).isoformat()
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO config (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, str(value), now))

    def list_config(self):
        rows = self._fetchall("SELECT key, value, updated_at FROM config ORDER BY key")
        return [(r["key"], r["value"], r["updated_at"]) for r in rows]
