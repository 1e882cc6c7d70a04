import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from db_pool import SQLiteConnectionPool
from env_validation import get_env_int
from engines.base import (
    ASSIGNMENT_STATUSES,
    STATUS_COMPLETED,
    STATUS_NOT_STARTED,
    STATUS_STARTED,
    AssignedStudent,
    AssignmentMeta,
    ScoreMap,
    StandardRef,
)
from schemas import StatusUpdate

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds
_IN_CLAUSE_CHUNK = 500

_SCHEMA = """
CREATE TABLE IF NOT EXISTS rosters (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  name        TEXT NOT NULL,
  created_at  TEXT DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS students (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  roster_id    INTEGER NOT NULL REFERENCES rosters(id),
  name         TEXT NOT NULL,
  external_id  TEXT,
  created_at   TEXT DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_students_roster ON students(roster_id);
CREATE TABLE IF NOT EXISTS test_groups (
  id    INTEGER PRIMARY KEY AUTOINCREMENT,
  name  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tests (
  id              INTEGER PRIMARY KEY AUTOINCREMENT,
  group_id        INTEGER NOT NULL REFERENCES test_groups(id),
  sequence        INTEGER NOT NULL,
  name            TEXT NOT NULL,
  administered_at TEXT
);
CREATE TABLE IF NOT EXISTS reporting_categories (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  name         TEXT NOT NULL,
  description  TEXT
);
CREATE TABLE IF NOT EXISTS standards (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  rc_id        INTEGER NOT NULL REFERENCES reporting_categories(id),
  domain       TEXT NOT NULL DEFAULT '',
  sub_domain   TEXT,
  code         TEXT NOT NULL,
  description  TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS scores (
  id             INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id     INTEGER NOT NULL REFERENCES students(id),
  test_id        INTEGER NOT NULL REFERENCES tests(id),
  overall_score  INTEGER NOT NULL,
  level          INTEGER NOT NULL,
  rc_scores      TEXT NOT NULL DEFAULT '{}',
  std_scores     TEXT NOT NULL DEFAULT '{}'
);
CREATE UNIQUE INDEX IF NOT EXISTS scores_student_test_unique ON scores(student_id, test_id);
CREATE TABLE IF NOT EXISTS assignments (
  id                     INTEGER PRIMARY KEY AUTOINCREMENT,
  name                   TEXT NOT NULL,
  platform               TEXT NOT NULL,
  group_id               INTEGER NOT NULL REFERENCES test_groups(id),
  rc_id                  INTEGER REFERENCES reporting_categories(id),
  created_after_test_id  INTEGER NOT NULL REFERENCES tests(id),
  impacted_test_id       INTEGER REFERENCES tests(id),
  created_at             TEXT DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS assignment_standards (
  assignment_id  INTEGER NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
  standard_id    INTEGER NOT NULL REFERENCES standards(id),
  PRIMARY KEY (assignment_id, standard_id)
);
CREATE TABLE IF NOT EXISTS assignment_students (
  assignment_id  INTEGER NOT NULL REFERENCES assignments(id) ON DELETE CASCADE,
  student_id     INTEGER NOT NULL REFERENCES students(id),
  status         TEXT NOT NULL DEFAULT 'not_started',
  started_at     TEXT,
  completed_at   TEXT,
  PRIMARY KEY (assignment_id, student_id)
);
CREATE INDEX IF NOT EXISTS idx_assignment_students_status ON assignment_students(assignment_id, status);
"""


def _chunks(values: Sequence[int], size: int = _IN_CLAUSE_CHUNK) -> Iterable[Sequence[int]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def _decode_score_map(raw: Optional[str], *, student_id: int, test_id: int) -> ScoreMap:
    """Turn stored ``{"12": 5310, ...}`` JSON into an int-keyed score map."""
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed std_scores for student %s on test %s", student_id, test_id)
        return {}
    if not isinstance(payload, dict):
        logger.warning("Unexpected std_scores shape for student %s on test %s", student_id, test_id)
        return {}

    scores: ScoreMap = {}
    for key, value in payload.items():
        if value is None:
            continue
        try:
            scores[int(key)] = float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Skipping non-numeric standard score %r=%r for student %s on test %s",
                key,
                value,
                student_id,
                test_id,
            )
    return scores


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImpactRepository:
    """SQLite-backed data source for the impact engines.

    Implements the read contracts of :class:`engines.base.ImpactDataSource`
    plus the handful of writes needed to populate a database.
    """

    def __init__(self, pool: SQLiteConnectionPool):
        self.pool = pool

    @classmethod
    def from_path(cls, path: str, max_connections: int = 10) -> "ImpactRepository":
        return cls(SQLiteConnectionPool(path, max_connections=max_connections))

    # -------------- low level --------------
    def _exec(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        with self.pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self.pool.get_connection() as con:
            return con.execute(sql, tuple(params)).fetchall()

    def init(self) -> None:
        with self.pool.get_connection() as con:
            con.executescript(_SCHEMA)
            con.commit()

    # -------------- writes --------------
    def add_roster(self, name: str) -> int:
        return int(self._exec("INSERT INTO rosters (name) VALUES (?)", (name,)).lastrowid)

    def add_student(self, roster_id: int, name: str, external_id: Optional[str] = None) -> int:
        cur = self._exec(
            "INSERT INTO students (roster_id, name, external_id) VALUES (?, ?, ?)",
            (roster_id, name, external_id),
        )
        return int(cur.lastrowid)

    def add_test_group(self, name: str) -> int:
        return int(self._exec("INSERT INTO test_groups (name) VALUES (?)", (name,)).lastrowid)

    def add_test(self, group_id: int, sequence: int, name: str, administered_at: Optional[str] = None) -> int:
        cur = self._exec(
            "INSERT INTO tests (group_id, sequence, name, administered_at) VALUES (?, ?, ?, ?)",
            (group_id, sequence, name, administered_at),
        )
        return int(cur.lastrowid)

    def add_reporting_category(self, name: str, description: Optional[str] = None) -> int:
        cur = self._exec(
            "INSERT INTO reporting_categories (name, description) VALUES (?, ?)",
            (name, description),
        )
        return int(cur.lastrowid)

    def add_standard(self, rc_id: int, code: str, description: str = "", domain: str = "") -> int:
        cur = self._exec(
            "INSERT INTO standards (rc_id, domain, code, description) VALUES (?, ?, ?, ?)",
            (rc_id, domain, code, description),
        )
        return int(cur.lastrowid)

    def add_score(
        self,
        student_id: int,
        test_id: int,
        std_scores: Mapping[int, float],
        *,
        overall_score: Optional[int] = None,
        level: int = 1,
    ) -> None:
        if overall_score is None:
            values = list(std_scores.values())
            overall_score = round(sum(values) / len(values)) if values else 0
        self._exec(
            """
            INSERT INTO scores (student_id, test_id, overall_score, level, std_scores)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(student_id, test_id) DO UPDATE SET
                overall_score = excluded.overall_score,
                level = excluded.level,
                std_scores = excluded.std_scores
            """,
            (
                student_id,
                test_id,
                overall_score,
                level,
                json.dumps({str(key): value for key, value in std_scores.items()}),
            ),
        )

    def add_assignment(
        self,
        name: str,
        platform: str,
        group_id: int,
        created_after_test_id: int,
        impacted_test_id: Optional[int] = None,
        *,
        rc_id: Optional[int] = None,
        standard_ids: Sequence[int] = (),
        student_ids: Sequence[int] = (),
    ) -> int:
        """Create an assignment with its standards and not-started student links."""
        with self.pool.transaction() as con:
            cur = con.execute(
                """
                INSERT INTO assignments (name, platform, group_id, rc_id, created_after_test_id, impacted_test_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (name, platform, group_id, rc_id, created_after_test_id, impacted_test_id),
            )
            assignment_id = int(cur.lastrowid)
            con.executemany(
                "INSERT INTO assignment_standards (assignment_id, standard_id) VALUES (?, ?)",
                [(assignment_id, standard_id) for standard_id in standard_ids],
            )
            con.executemany(
                "INSERT INTO assignment_students (assignment_id, student_id, status) VALUES (?, ?, ?)",
                [(assignment_id, student_id, STATUS_NOT_STARTED) for student_id in student_ids],
            )
        logger.debug(
            "Created assignment %s with %d standard(s) and %d student(s)",
            assignment_id,
            len(standard_ids),
            len(student_ids),
        )
        return assignment_id

    def update_assignment_statuses(self, assignment_id: int, updates: Iterable[Any]) -> Dict[str, int]:
        """Apply a batch of status transitions in a single transaction.

        ``updates`` holds :class:`schemas.StatusUpdate` objects or plain dicts
        with the same keys. Students not linked to the assignment are skipped.
        An invalid status raises ``ValueError`` before anything is written.
        """
        parsed = [update if isinstance(update, StatusUpdate) else StatusUpdate(**update) for update in updates]

        updated = 0
        skipped = 0
        with self.pool.transaction() as con:
            for update in parsed:
                timestamp = update.timestamp.isoformat() if update.timestamp else _now_iso()
                if update.status == STATUS_COMPLETED:
                    cur = con.execute(
                        """
                        UPDATE assignment_students
                        SET status = ?, completed_at = ?, started_at = COALESCE(started_at, ?)
                        WHERE assignment_id = ? AND student_id = ?
                        """,
                        (STATUS_COMPLETED, timestamp, timestamp, assignment_id, update.student_id),
                    )
                elif update.status == STATUS_STARTED:
                    cur = con.execute(
                        """
                        UPDATE assignment_students
                        SET status = ?, started_at = ?
                        WHERE assignment_id = ? AND student_id = ?
                        """,
                        (STATUS_STARTED, timestamp, assignment_id, update.student_id),
                    )
                else:
                    cur = con.execute(
                        """
                        UPDATE assignment_students
                        SET status = ?, started_at = NULL, completed_at = NULL
                        WHERE assignment_id = ? AND student_id = ?
                        """,
                        (STATUS_NOT_STARTED, assignment_id, update.student_id),
                    )
                if cur.rowcount:
                    updated += 1
                else:
                    skipped += 1

        logger.info(
            "Applied %d status update(s) to assignment %s (%d skipped)", updated, assignment_id, skipped
        )
        return {"updated": updated, "skipped": skipped}

    # -------------- reads (ImpactDataSource) --------------
    def get_assignment(self, assignment_id: int) -> Optional[AssignmentMeta]:
        rows = self._query(
            """
            SELECT a.id, a.name, a.platform, a.group_id, a.created_after_test_id,
                   a.impacted_test_id, COALESCE(rc.name, '') AS rc_name
            FROM assignments a
            LEFT JOIN reporting_categories rc ON rc.id = a.rc_id
            WHERE a.id = ?
            """,
            (assignment_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return AssignmentMeta(
            id=row["id"],
            name=row["name"],
            platform=row["platform"],
            group_id=row["group_id"],
            created_after_test_id=row["created_after_test_id"],
            impacted_test_id=row["impacted_test_id"],
            rc_name=row["rc_name"],
        )

    def get_aligned_standards(self, assignment_id: int) -> List[StandardRef]:
        rows = self._query(
            """
            SELECT s.id, s.code, s.description
            FROM assignment_standards ast
            JOIN standards s ON s.id = ast.standard_id
            WHERE ast.assignment_id = ?
            ORDER BY ast.rowid
            """,
            (assignment_id,),
        )
        return [StandardRef(id=row["id"], code=row["code"], description=row["description"]) for row in rows]

    def get_assignment_students(self, assignment_id: int, status: Optional[str] = None) -> List[AssignedStudent]:
        sql = """
            SELECT asn.student_id, st.roster_id, asn.status
            FROM assignment_students asn
            JOIN students st ON st.id = asn.student_id
            WHERE asn.assignment_id = ?
        """
        params: List[Any] = [assignment_id]
        if status is not None:
            if status not in ASSIGNMENT_STATUSES:
                raise ValueError(f"Unknown assignment status: {status}")
            sql += " AND asn.status = ?"
            params.append(status)
        sql += " ORDER BY asn.student_id"
        return [
            AssignedStudent(student_id=row["student_id"], roster_id=row["roster_id"], status=row["status"])
            for row in self._query(sql, params)
        ]

    def get_roster_students(self, roster_ids: Iterable[int]) -> List[int]:
        ids = list(roster_ids)
        student_ids: List[int] = []
        for chunk in _chunks(ids):
            rows = self._query(
                f"SELECT id FROM students WHERE roster_id IN ({_placeholders(len(chunk))}) ORDER BY id",
                chunk,
            )
            student_ids.extend(row["id"] for row in rows)
        return student_ids

    def get_score_maps(self, student_ids: Sequence[int], test_id: int) -> Dict[int, ScoreMap]:
        ids = list(student_ids)
        maps: Dict[int, ScoreMap] = {}
        with self.pool.get_connection() as con:
            for chunk in _chunks(ids):
                rows = con.execute(
                    f"""
                    SELECT student_id, std_scores
                    FROM scores
                    WHERE test_id = ? AND student_id IN ({_placeholders(len(chunk))})
                    """,
                    (test_id, *chunk),
                ).fetchall()
                for row in rows:
                    maps[row["student_id"]] = _decode_score_map(
                        row["std_scores"], student_id=row["student_id"], test_id=test_id
                    )
        return maps

    def get_test_name(self, test_id: int) -> Optional[str]:
        rows = self._query("SELECT name FROM tests WHERE id = ?", (test_id,))
        return rows[0]["name"] if rows else None

    def list_group_assignment_ids(self, group_id: int) -> List[int]:
        rows = self._query("SELECT id FROM assignments WHERE group_id = ? ORDER BY id", (group_id,))
        return [row["id"] for row in rows]


_repository: Optional[ImpactRepository] = None
_repository_lock = threading.Lock()


def get_repository() -> ImpactRepository:
    """Return the process-wide repository for ``DB_PATH``, creating it on first use."""
    global _repository
    with _repository_lock:
        if _repository is None:
            max_connections = get_env_int("DB_MAX_CONNECTIONS", 10)
            repository = ImpactRepository.from_path(os.getenv("DB_PATH", DB_PATH), max_connections=max_connections)
            repository.init()
            _repository = repository
        return _repository


def reset_repository(repository: Optional[ImpactRepository] = None) -> None:
    global _repository
    with _repository_lock:
        if _repository is not None and _repository is not repository:
            _repository.pool.close_all()
        _repository = repository
