from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Literal, Protocol

from common.utils import now_utc_iso

from jobswipe.geo import location_keywords
from jobswipe.models import (
    POSITIVE_ACTIONS,
    Actor,
    Interaction,
    InteractionAction,
    Job,
    JobDraft,
    OccupationRecord,
    SessionRecord,
    Sentiment,
    UserRecord,
)

JobOrder = Literal["recent", "primary_key"]


class JobStorage(Protocol):
    def get_job(self, job_id: int) -> Job | None: ...

    def get_job_by_external_id(self, external_id: str) -> Job | None: ...

    def create_job(self, draft: JobDraft) -> Job | None: ...

    def select_jobs(
        self,
        *,
        exclude_ids: list[int] | None = None,
        category: str | None = None,
        is_remote: bool | None = None,
        location: str | None = None,
        order: JobOrder | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Job]: ...

    def count_jobs(
        self,
        *,
        exclude_ids: list[int] | None = None,
        category: str | None = None,
        is_remote: bool | None = None,
        location: str | None = None,
    ) -> int: ...

    def get_user(self, user_id: int) -> UserRecord | None: ...

    def get_anonymous_session(self, session_id: str) -> SessionRecord | None: ...

    def get_liked_occupation_labels(self, user_id: int) -> list[str]: ...

    def get_liked_jobs(self, actor: Actor) -> list[Job]: ...

    def get_interactions_for(self, actor: Actor) -> list[Interaction]: ...

    def record_interaction(
        self,
        actor: Actor,
        job_id: int,
        action: InteractionAction,
        sentiment: Sentiment | None = None,
    ) -> Interaction: ...


def _lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    return value


class JobRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            # SQLite's LOWER() only folds ASCII; feed locations carry accents.
            self._connection.create_function("py_lower", 1, _lower, deterministic=True)
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    company TEXT,
                    location TEXT,
                    description TEXT,
                    category TEXT,
                    job_type TEXT,
                    salary TEXT,
                    skills_json TEXT NOT NULL DEFAULT '[]',
                    latitude REAL,
                    longitude REAL,
                    is_remote INTEGER NOT NULL DEFAULT 0,
                    posted_at TEXT,
                    raw_json TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    latitude REAL,
                    longitude REAL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS anonymous_sessions (
                    session_id TEXT PRIMARY KEY,
                    latitude REAL,
                    longitude REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS occupations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    preferred_label TEXT NOT NULL,
                    isco_group TEXT
                );

                CREATE TABLE IF NOT EXISTS user_occupations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id),
                    occupation_id INTEGER NOT NULL REFERENCES occupations(id),
                    liked INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS interactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER REFERENCES users(id),
                    session_id TEXT,
                    job_id INTEGER NOT NULL REFERENCES jobs(id),
                    action TEXT NOT NULL,
                    sentiment TEXT,
                    created_at TEXT NOT NULL,
                    CHECK ((user_id IS NULL) != (session_id IS NULL))
                );

                CREATE INDEX IF NOT EXISTS idx_interactions_user ON interactions(user_id);
                CREATE INDEX IF NOT EXISTS idx_interactions_session ON interactions(session_id);
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def create_job(self, draft: JobDraft) -> Job | None:
        """Insert a job; returns None when the external id is already stored."""
        with self._lock:
            cursor = self.connection.execute(
                """
                INSERT INTO jobs (
                    external_id,
                    title,
                    company,
                    location,
                    description,
                    category,
                    job_type,
                    salary,
                    skills_json,
                    latitude,
                    longitude,
                    is_remote,
                    posted_at,
                    raw_json,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO NOTHING
                """,
                (
                    draft.external_id,
                    draft.title,
                    draft.company,
                    draft.location,
                    draft.description,
                    draft.category,
                    draft.job_type,
                    draft.salary,
                    json.dumps(sorted(set(draft.skills))),
                    draft.latitude,
                    draft.longitude,
                    1 if draft.is_remote else 0,
                    draft.posted_at,
                    json.dumps(draft.raw, default=str),
                    now_utc_iso(),
                ),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.get_job(int(cursor.lastrowid))

    def get_job(self, job_id: int) -> Job | None:
        with self._lock:
            row = self.connection.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_job(row) if row else None

    def get_job_by_external_id(self, external_id: str) -> Job | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM jobs WHERE external_id = ?",
                (external_id,),
            ).fetchone()
            return self._row_to_job(row) if row else None

    def count_all_jobs(self) -> int:
        with self._lock:
            return int(self.connection.execute("SELECT COUNT(1) AS c FROM jobs").fetchone()["c"])

    def _job_conditions(
        self,
        *,
        exclude_ids: list[int] | None,
        category: str | None,
        is_remote: bool | None,
        location: str | None,
    ) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []
        if exclude_ids:
            placeholders = ", ".join("?" for _ in exclude_ids)
            conditions.append(f"id NOT IN ({placeholders})")
            params.extend(exclude_ids)
        if category:
            conditions.append("category = ?")
            params.append(category)
        if is_remote is not None:
            conditions.append("is_remote = ?")
            params.append(1 if is_remote else 0)
        if location and location.strip():
            keywords = location_keywords(location)
            conditions.append(
                "(" + " OR ".join("py_lower(location) LIKE ?" for _ in keywords) + ")"
            )
            params.extend(f"%{keyword}%" for keyword in keywords)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, params

    def select_jobs(
        self,
        *,
        exclude_ids: list[int] | None = None,
        category: str | None = None,
        is_remote: bool | None = None,
        location: str | None = None,
        order: JobOrder | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Job]:
        where, params = self._job_conditions(
            exclude_ids=exclude_ids,
            category=category,
            is_remote=is_remote,
            location=location,
        )
        order_clause = ""
        if order == "recent":
            order_clause = "ORDER BY created_at DESC, id DESC"
        elif order == "primary_key":
            order_clause = "ORDER BY id ASC"
        with self._lock:
            rows = self.connection.execute(
                f"SELECT * FROM jobs {where} {order_clause} LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    def count_jobs(
        self,
        *,
        exclude_ids: list[int] | None = None,
        category: str | None = None,
        is_remote: bool | None = None,
        location: str | None = None,
    ) -> int:
        where, params = self._job_conditions(
            exclude_ids=exclude_ids,
            category=category,
            is_remote=is_remote,
            location=location,
        )
        with self._lock:
            row = self.connection.execute(
                f"SELECT COUNT(1) AS c FROM jobs {where}",
                params,
            ).fetchone()
            return int(row["c"])

    def create_user(
        self,
        username: str,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> UserRecord:
        with self._lock:
            cursor = self.connection.execute(
                """
                INSERT INTO users (username, latitude, longitude, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (username, latitude, longitude, now_utc_iso()),
            )
            self.connection.commit()
            user = self.get_user(int(cursor.lastrowid))
            if user is None:
                raise RuntimeError("Failed to load inserted user")
            return user

    def get_user(self, user_id: int) -> UserRecord | None:
        with self._lock:
            row = self.connection.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            return UserRecord(
                id=row["id"],
                username=row["username"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                created_at=row["created_at"],
            )

    def upsert_anonymous_session(
        self,
        session_id: str,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> SessionRecord:
        now = now_utc_iso()
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO anonymous_sessions (session_id, latitude, longitude, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    updated_at = excluded.updated_at
                """,
                (session_id, latitude, longitude, now, now),
            )
            self.connection.commit()
            session = self.get_anonymous_session(session_id)
            if session is None:
                raise RuntimeError("Failed to load upserted session")
            return session

    def get_anonymous_session(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM anonymous_sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            return SessionRecord(
                session_id=row["session_id"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    def create_occupation(self, preferred_label: str, *, isco_group: str | None = None) -> OccupationRecord:
        with self._lock:
            cursor = self.connection.execute(
                "INSERT INTO occupations (preferred_label, isco_group) VALUES (?, ?)",
                (preferred_label, isco_group),
            )
            self.connection.commit()
            return OccupationRecord(
                id=int(cursor.lastrowid),
                preferred_label=preferred_label,
                isco_group=isco_group,
            )

    def set_occupation_preference(self, user_id: int, occupation_id: int, *, liked: bool) -> None:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO user_occupations (user_id, occupation_id, liked, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, occupation_id, 1 if liked else 0, now_utc_iso()),
            )
            self.connection.commit()

    def get_liked_occupation_labels(self, user_id: int) -> list[str]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT o.preferred_label AS label
                FROM user_occupations uo
                JOIN occupations o ON o.id = uo.occupation_id
                WHERE uo.user_id = ? AND uo.liked = 1
                ORDER BY uo.id DESC
                """,
                (user_id,),
            ).fetchall()
            return [row["label"] for row in rows]

    def record_interaction(
        self,
        actor: Actor,
        job_id: int,
        action: InteractionAction,
        sentiment: Sentiment | None = None,
    ) -> Interaction:
        with self._lock:
            created_at = now_utc_iso()
            cursor = self.connection.execute(
                """
                INSERT INTO interactions (user_id, session_id, job_id, action, sentiment, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (actor.user_id, actor.session_id, job_id, action, sentiment, created_at),
            )
            self.connection.commit()
            return Interaction(
                id=int(cursor.lastrowid),
                user_id=actor.user_id,
                session_id=actor.session_id,
                job_id=job_id,
                action=action,
                sentiment=sentiment,
                created_at=created_at,
            )

    @staticmethod
    def _actor_condition(actor: Actor) -> tuple[str, Any]:
        if actor.user_id is not None:
            return "user_id = ?", actor.user_id
        return "session_id = ?", actor.session_id

    def get_interactions_for(self, actor: Actor) -> list[Interaction]:
        condition, value = self._actor_condition(actor)
        with self._lock:
            rows = self.connection.execute(
                f"SELECT * FROM interactions WHERE {condition} ORDER BY id ASC",
                (value,),
            ).fetchall()
            return [
                Interaction(
                    id=row["id"],
                    user_id=row["user_id"],
                    session_id=row["session_id"],
                    job_id=row["job_id"],
                    action=row["action"],
                    sentiment=row["sentiment"],
                    created_at=row["created_at"],
                )
                for row in rows
            ]

    def get_liked_jobs(self, actor: Actor) -> list[Job]:
        return self.get_jobs_by_actions(actor, POSITIVE_ACTIONS)

    def get_jobs_by_actions(self, actor: Actor, actions: tuple[str, ...]) -> list[Job]:
        """Jobs the actor acted on with any of ``actions``, most recent interaction first."""
        condition, value = self._actor_condition(actor)
        placeholders = ", ".join("?" for _ in actions)
        with self._lock:
            rows = self.connection.execute(
                f"""
                SELECT j.*
                FROM jobs j
                JOIN (
                    SELECT job_id, MAX(id) AS last_interaction_id
                    FROM interactions
                    WHERE {condition} AND action IN ({placeholders})
                    GROUP BY job_id
                ) latest ON latest.job_id = j.id
                ORDER BY latest.last_interaction_id DESC
                """,
                (value, *actions),
            ).fetchall()
            return [self._row_to_job(row) for row in rows]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            external_id=row["external_id"],
            title=row["title"],
            company=row["company"],
            location=row["location"],
            description=row["description"],
            category=row["category"],
            job_type=row["job_type"],
            salary=row["salary"],
            skills=json.loads(row["skills_json"] or "[]"),
            latitude=row["latitude"],
            longitude=row["longitude"],
            is_remote=bool(row["is_remote"]),
            posted_at=row["posted_at"],
            raw=json.loads(row["raw_json"] or "{}"),
            created_at=row["created_at"],
        )
