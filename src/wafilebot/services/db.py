"""SQLite archive — registered users and their archived media records.

Two tables:
  - users: web-registered accounts, bound to a WhatsApp sender on #verify.
  - media: one row per archived file or captured link.

The database lives at ``<data_dir>/wafilebot.db``. sqlite3 is blocking, so
every public method runs its query in ``asyncio.to_thread`` under a lock.

Key class: ArchiveDB.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Stored in PRAGMA user_version
_SCHEMA_VERSION = 1

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS users (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT    NOT NULL DEFAULT '',
    email           TEXT    NOT NULL UNIQUE,
    whatsapp_number TEXT,
    unique_code     TEXT    NOT NULL UNIQUE,
    is_verified     INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS media (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL REFERENCES users(id),
    category     TEXT    NOT NULL,
    media_url    TEXT    NOT NULL,
    type         TEXT    NOT NULL,
    file_size    INTEGER NOT NULL DEFAULT 0,
    keywords     TEXT    NOT NULL DEFAULT '[]',  -- JSON array
    subject      TEXT,
    event_date   TEXT,                           -- ISO date
    content_type TEXT,
    timestamp    REAL    NOT NULL                -- epoch seconds
);

CREATE INDEX IF NOT EXISTS idx_users_number   ON users(whatsapp_number);
CREATE INDEX IF NOT EXISTS idx_media_user     ON media(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_media_category ON media(user_id, category);
"""


@dataclass
class UserRecord:
    id: int
    name: str
    email: str
    whatsapp_number: str | None
    unique_code: str
    is_verified: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UserRecord:
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            whatsapp_number=row["whatsapp_number"],
            unique_code=row["unique_code"],
            is_verified=bool(row["is_verified"]),
        )


@dataclass
class MediaRecord:
    """One archived file or link."""

    user_id: int
    category: str
    media_url: str
    type: str
    file_size: int = 0
    keywords: list[str] = field(default_factory=list)
    subject: str | None = None
    event_date: str | None = None
    content_type: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MediaRecord:
        try:
            keywords = json.loads(row["keywords"] or "[]")
        except ValueError:
            keywords = []
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            category=row["category"],
            media_url=row["media_url"],
            type=row["type"],
            file_size=row["file_size"],
            keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            subject=row["subject"],
            event_date=row["event_date"],
            content_type=row["content_type"],
            timestamp=datetime.fromtimestamp(row["timestamp"]),
        )


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ArchiveDB:
    """SQLite store for users and media records."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return cached) connection and ensure schema exists."""
        if self._conn is not None:
            return self._conn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema(self._conn)
        return self._conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        conn.executescript(_SCHEMA)
        if version < _SCHEMA_VERSION:
            logger.info("Initialised archive DB schema v%d", _SCHEMA_VERSION)
            conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
            conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    async def _run(self, fn, *args):  # type: ignore[no-untyped-def]
        def _locked():  # type: ignore[no-untyped-def]
            with self._lock:
                return fn(self.connect(), *args)

        return await asyncio.to_thread(_locked)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @staticmethod
    def _find_user_by_code(conn: sqlite3.Connection, code: str) -> UserRecord | None:
        row = conn.execute(
            "SELECT * FROM users WHERE unique_code = ?", (code,)
        ).fetchone()
        return UserRecord.from_row(row) if row else None

    @staticmethod
    def _find_verified_user(
        conn: sqlite3.Connection, whatsapp_number: str
    ) -> UserRecord | None:
        row = conn.execute(
            "SELECT * FROM users WHERE whatsapp_number = ? AND is_verified = 1"
            " ORDER BY id LIMIT 1",
            (whatsapp_number,),
        ).fetchone()
        return UserRecord.from_row(row) if row else None

    @staticmethod
    def _bind_whatsapp(
        conn: sqlite3.Connection, user_id: int, whatsapp_number: str
    ) -> None:
        # A number belongs to one account at a time
        conn.execute(
            "UPDATE users SET whatsapp_number = NULL WHERE whatsapp_number = ? AND id != ?",
            (whatsapp_number, user_id),
        )
        conn.execute(
            "UPDATE users SET whatsapp_number = ?, is_verified = 1 WHERE id = ?",
            (whatsapp_number, user_id),
        )
        conn.commit()

    @staticmethod
    def _create_user(conn: sqlite3.Connection, name: str, email: str) -> UserRecord:
        for _ in range(10):
            code = secrets.token_hex(3)
            try:
                cur = conn.execute(
                    "INSERT INTO users (name, email, unique_code) VALUES (?, ?, ?)",
                    (name, email, code),
                )
            except sqlite3.IntegrityError:
                if conn.execute(
                    "SELECT 1 FROM users WHERE email = ?", (email,)
                ).fetchone():
                    raise ValueError(f"A user with email {email} already exists")
                continue
            conn.commit()
            return UserRecord(
                id=cur.lastrowid or 0,
                name=name,
                email=email,
                whatsapp_number=None,
                unique_code=code,
                is_verified=False,
            )
        raise RuntimeError("Could not allocate a unique verification code")

    async def find_user_by_code(self, code: str) -> UserRecord | None:
        return await self._run(self._find_user_by_code, code)

    async def find_verified_user(self, whatsapp_number: str) -> UserRecord | None:
        return await self._run(self._find_verified_user, whatsapp_number)

    async def bind_whatsapp(self, user_id: int, whatsapp_number: str) -> None:
        """Bind a WhatsApp sender to a user and mark the user verified."""
        await self._run(self._bind_whatsapp, user_id, whatsapp_number)

    async def create_user(self, name: str, email: str) -> UserRecord:
        """Register an unverified user with a fresh random unique code.

        Raises ValueError if the email is already registered.
        """
        return await self._run(self._create_user, name, email)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    @staticmethod
    def _create_media(conn: sqlite3.Connection, record: MediaRecord) -> int:
        cur = conn.execute(
            "INSERT INTO media (user_id, category, media_url, type, file_size,"
            " keywords, subject, event_date, content_type, timestamp)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.user_id,
                record.category,
                record.media_url,
                record.type,
                record.file_size,
                json.dumps(record.keywords, ensure_ascii=False),
                record.subject,
                record.event_date,
                record.content_type,
                record.timestamp.timestamp(),
            ),
        )
        conn.commit()
        return cur.lastrowid or 0

    @staticmethod
    def _query_media(
        conn: sqlite3.Connection,
        user_id: int,
        category: str | None,
        start: datetime | None,
        end: datetime | None,
        text: str | None,
        limit: int | None,
    ) -> list[MediaRecord]:
        sql = "SELECT * FROM media"
        conditions = ["user_id = ?"]
        params: list[object] = [user_id]

        if category is not None:
            conditions.append("category = ?")
            params.append(category)
        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(start.timestamp())
        if end is not None:
            conditions.append("timestamp <= ?")
            params.append(end.timestamp())
        if text:
            pattern = f"%{_escape_like(text.lower())}%"
            conditions.append(
                "(lower(keywords) LIKE ? ESCAPE '\\'"
                " OR lower(coalesce(subject, '')) LIKE ? ESCAPE '\\'"
                " OR lower(category) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])

        sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = conn.execute(sql, params).fetchall()
        return [MediaRecord.from_row(r) for r in rows]

    @staticmethod
    def _count_by_category(conn: sqlite3.Connection, user_id: int) -> dict[str, int]:
        rows = conn.execute(
            "SELECT category, COUNT(*) AS n FROM media WHERE user_id = ?"
            " GROUP BY category ORDER BY category",
            (user_id,),
        ).fetchall()
        return {r["category"]: r["n"] for r in rows}

    async def create_media(self, record: MediaRecord) -> int:
        """Insert a media record. Returns its row id."""
        record.id = await self._run(self._create_media, record)
        return record.id

    async def query_media(
        self,
        user_id: int,
        *,
        category: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        text: str | None = None,
        limit: int | None = None,
    ) -> list[MediaRecord]:
        """Records of one user, newest first.

        ``text`` matches keywords, subject and category case-insensitively.
        """
        return await self._run(
            self._query_media, user_id, category, start, end, text, limit
        )

    async def count_by_category(self, user_id: int) -> dict[str, int]:
        return await self._run(self._count_by_category, user_id)
