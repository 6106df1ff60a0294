from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from tabulation.config import load_settings
from tabulation.errors import CompetitionNotFound
from tabulation.log import get_logger
from tabulation.models import ActiveCriterion, CompetitionSnapshot, ScoreRecord
from tabulation.rounding import is_valid_score, round2

log = get_logger("store")


class ScoreStore:
    """Authoritative sqlite store for competitions, scores and judging state."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or load_settings().db_path

    # -----------------------
    # DB helpers
    # -----------------------
    def db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.db() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS competitions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                -- one value per (segment, contestant, judge, criterion)
                CREATE TABLE IF NOT EXISTS scores (
                    competition_id INTEGER NOT NULL,
                    segment_id TEXT NOT NULL,
                    contestant_id TEXT NOT NULL,
                    judge_id TEXT NOT NULL,
                    criterion_id TEXT NOT NULL,
                    score REAL NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (competition_id, segment_id, contestant_id, judge_id, criterion_id)
                );

                CREATE TABLE IF NOT EXISTS active_criteria (
                    competition_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    segment_id TEXT NOT NULL,
                    criterion_id TEXT NOT NULL,
                    PRIMARY KEY (competition_id, segment_id, criterion_id)
                );

                CREATE TABLE IF NOT EXISTS judge_finalization (
                    competition_id INTEGER NOT NULL,
                    judge_id TEXT NOT NULL,
                    segment_id TEXT NOT NULL,
                    finalized_at TEXT NOT NULL,
                    PRIMARY KEY (competition_id, judge_id, segment_id)
                );
                """
            )
        log.debug("Initialized database at %s", self.path)

    def _require(self, conn: sqlite3.Connection, competition_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM competitions WHERE id=?", (competition_id,)).fetchone()
        if not row:
            raise CompetitionNotFound(f"Competition {competition_id} not found")
        return row

    # -----------------------
    # Competitions
    # -----------------------
    def create_competition(self, snapshot: CompetitionSnapshot) -> int:
        now = datetime.utcnow().isoformat()
        data = snapshot.to_dict()
        data.pop("activeCriteria", None)
        with self.db() as conn:
            cur = conn.execute(
                "INSERT INTO competitions (name, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (snapshot.settings.name, json.dumps(data), now, now),
            )
            competition_id = int(cur.lastrowid)
        if snapshot.active_criteria:
            self.set_active_criteria(competition_id, snapshot.active_criteria)
        log.info("Created competition %d (%s)", competition_id, snapshot.settings.name)
        return competition_id

    def save_competition(self, competition_id: int, snapshot: CompetitionSnapshot) -> None:
        """Overwrite settings, contestants and judges. Active criteria are stored separately."""
        data = snapshot.to_dict()
        data.pop("activeCriteria", None)
        with self.db() as conn:
            self._require(conn, competition_id)
            conn.execute(
                "UPDATE competitions SET name=?, data=?, updated_at=? WHERE id=?",
                (snapshot.settings.name, json.dumps(data), datetime.utcnow().isoformat(), competition_id),
            )

    def fetch_competition(self, competition_id: int) -> CompetitionSnapshot:
        with self.db() as conn:
            row = self._require(conn, competition_id)
            active = conn.execute(
                "SELECT segment_id, criterion_id FROM active_criteria WHERE competition_id=? ORDER BY position",
                (competition_id,),
            ).fetchall()
        data: Dict[str, Any] = json.loads(row["data"])
        data["activeCriteria"] = [{"segmentId": r["segment_id"], "criterionId": r["criterion_id"]} for r in active]
        return CompetitionSnapshot.from_dict(data)

    def list_competitions(self) -> List[Dict[str, Any]]:
        with self.db() as conn:
            rows = conn.execute("SELECT id, name, created_at FROM competitions ORDER BY id").fetchall()
        return [{"id": r["id"], "name": r["name"], "createdAt": r["created_at"]} for r in rows]

    # -----------------------
    # Scores
    # -----------------------
    def fetch_scores(self, competition_id: int) -> List[Dict[str, Any]]:
        with self.db() as conn:
            self._require(conn, competition_id)
            rows = conn.execute(
                """
                SELECT segment_id, contestant_id, judge_id, criterion_id, score
                FROM scores WHERE competition_id=?
                ORDER BY segment_id, contestant_id, judge_id, criterion_id
                """,
                (competition_id,),
            ).fetchall()
        return [
            {
                "segment_id": r["segment_id"],
                "contestant_id": r["contestant_id"],
                "judge_id": r["judge_id"],
                "criterion_id": r["criterion_id"],
                "score": round2(r["score"]),
            }
            for r in rows
        ]

    def persist_score(self, competition_id: int, record: ScoreRecord) -> None:
        self.persist_scores(competition_id, [record])

    def persist_scores(self, competition_id: int, records: Iterable[ScoreRecord]) -> int:
        """Upsert a batch in one transaction: all rows land or none do."""
        records = list(records)
        for record in records:
            if not is_valid_score(record.value):
                raise ValueError(f"Refusing to store invalid score {record.value!r}")
        now = datetime.utcnow().isoformat()
        with self.db() as conn:
            self._require(conn, competition_id)
            conn.executemany(
                """
                INSERT INTO scores (competition_id, segment_id, contestant_id, judge_id, criterion_id, score, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(competition_id, segment_id, contestant_id, judge_id, criterion_id)
                DO UPDATE SET score=excluded.score, updated_at=excluded.updated_at
                """,
                [
                    (competition_id, r.segment_id, r.contestant_id, r.judge_id, r.criterion_id, round2(r.value), now)
                    for r in records
                ],
            )
        return len(records)

    def delete_score(self, competition_id: int, segment_id: str, contestant_id: str,
                     judge_id: str, criterion_id: str) -> bool:
        with self.db() as conn:
            self._require(conn, competition_id)
            cur = conn.execute(
                """
                DELETE FROM scores
                WHERE competition_id=? AND segment_id=? AND contestant_id=? AND judge_id=? AND criterion_id=?
                """,
                (competition_id, segment_id, contestant_id, judge_id, criterion_id),
            )
        return cur.rowcount > 0

    def reset_scores(self, competition_id: int, preserve_criterion_ids: Iterable[Tuple[str, str]] = ()) -> int:
        """Delete every score except those under the preserved (segment, criterion) pairs."""
        keep: Set[Tuple[str, str]] = set(preserve_criterion_ids)
        with self.db() as conn:
            self._require(conn, competition_id)
            rows = conn.execute(
                "SELECT DISTINCT segment_id, criterion_id FROM scores WHERE competition_id=?",
                (competition_id,),
            ).fetchall()
            removed = 0
            for r in rows:
                if (r["segment_id"], r["criterion_id"]) in keep:
                    continue
                cur = conn.execute(
                    "DELETE FROM scores WHERE competition_id=? AND segment_id=? AND criterion_id=?",
                    (competition_id, r["segment_id"], r["criterion_id"]),
                )
                removed += cur.rowcount
        log.info("Reset competition %d: removed %d scores, preserved %d criteria", competition_id, removed, len(keep))
        return removed

    # -----------------------
    # Judging state
    # -----------------------
    def set_active_criteria(self, competition_id: int, active: Iterable[ActiveCriterion]) -> None:
        with self.db() as conn:
            self._require(conn, competition_id)
            conn.execute("DELETE FROM active_criteria WHERE competition_id=?", (competition_id,))
            conn.executemany(
                "INSERT OR IGNORE INTO active_criteria (competition_id, position, segment_id, criterion_id) VALUES (?, ?, ?, ?)",
                [(competition_id, idx, a.segment_id, a.criterion_id) for idx, a in enumerate(active)],
            )

    def finalize_judge(self, competition_id: int, judge_id: str, segment_id: str) -> None:
        with self.db() as conn:
            self._require(conn, competition_id)
            conn.execute(
                """
                INSERT INTO judge_finalization (competition_id, judge_id, segment_id, finalized_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(competition_id, judge_id, segment_id) DO UPDATE SET finalized_at=excluded.finalized_at
                """,
                (competition_id, judge_id, segment_id, datetime.utcnow().isoformat()),
            )

    def finalized_judges(self, competition_id: int) -> Set[Tuple[str, str]]:
        """(judge_id, segment_id) pairs that are finalized."""
        with self.db() as conn:
            self._require(conn, competition_id)
            rows = conn.execute(
                "SELECT judge_id, segment_id FROM judge_finalization WHERE competition_id=?",
                (competition_id,),
            ).fetchall()
        return {(r["judge_id"], r["segment_id"]) for r in rows}

    def reset_finalization(self, competition_id: int, judge_id: Optional[str] = None) -> int:
        with self.db() as conn:
            self._require(conn, competition_id)
            if judge_id is None:
                cur = conn.execute("DELETE FROM judge_finalization WHERE competition_id=?", (competition_id,))
            else:
                cur = conn.execute(
                    "DELETE FROM judge_finalization WHERE competition_id=? AND judge_id=?",
                    (competition_id, judge_id),
                )
        return cur.rowcount
