"""SQLite storage adapter.

Implements the core MessageStorePort using a simple SQLite database.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import MAX_MESSAGE_LENGTH, Message, NewMessage

LOGGER = logging.getLogger(__name__)

# Only approved, non-deleted rows are ever served to the traversal engine.
_VISIBLE = "approved = 1 AND deleted_at IS NULL"


class SQLiteMessageStore:
    """Thin SQLite wrapper that satisfies the MessageStorePort contract.

    A fresh connection per call keeps the adapter safe to use from the worker
    threads the core runs store calls on.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the messages table and its indexes if they do not exist."""

        with self._connect() as conn:
            # messages is append-only from the engine's point of view; moderation
            # hides rows by flipping approved or setting deleted_at.
            # Fields:
            # - id: strictly increasing integer, the ordering key for both cursors
            # - content: message text (1-280 characters)
            # - created_at: ISO-8601 UTC timestamp, used for similarity scoring
            # - approved: 1 when publicly visible
            # - deleted_at: soft delete timestamp (NULL = active)
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL
                        CHECK (length(content) BETWEEN 1 AND {MAX_MESSAGE_LENGTH}),
                    created_at TIMESTAMP NOT NULL,
                    approved INTEGER NOT NULL DEFAULT 1,
                    deleted_at TIMESTAMP DEFAULT NULL
                )
                """
            )
            # Partial index over the visible set serves both cursor directions.
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_messages_visible_id
                ON messages(id) WHERE {_VISIBLE}
                """
            )

    def get_max_message_id(self) -> int:
        """Return the highest visible id, or 0 when nothing is visible."""

        with self._connect() as conn:
            row = conn.execute(f"SELECT MAX(id) AS max_id FROM messages WHERE {_VISIBLE}").fetchone()
        return int(row["max_id"]) if row and row["max_id"] is not None else 0

    def fetch_batch_with_cursor(
        self,
        cursor: int,
        count: int,
        order: str = "DESC",
        upper_bound: Optional[int] = None,
    ) -> list[Message]:
        """Page through visible messages from ``cursor`` (inclusive).

        DESC walks backwards (id <= cursor), ASC forwards (id >= cursor).
        ``upper_bound`` caps ids so history never overlaps the new-message path.
        """

        order = order.upper()
        if order == "DESC":
            clause = "id <= ?"
        elif order == "ASC":
            clause = "id >= ?"
        else:
            raise ValueError(f"Unsupported order: {order}")

        params: list[int] = [cursor]
        bound = ""
        if upper_bound is not None:
            bound = " AND id <= ?"
            params.append(upper_bound)
        params.append(count)

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, content, created_at, approved, deleted_at
                FROM messages
                WHERE {_VISIBLE} AND {clause}{bound}
                ORDER BY id {order}
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def fetch_new_messages_above_watermark(
        self, watermark: int, limit: Optional[int] = None
    ) -> list[Message]:
        """Return visible messages with id > watermark, oldest first."""

        query = f"""
            SELECT id, content, created_at, approved, deleted_at
            FROM messages
            WHERE {_VISIBLE} AND id > ?
            ORDER BY id ASC
        """
        params: list[int] = [watermark]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_message(row) for row in rows]

    def insert_message(self, message: NewMessage) -> Optional[Message]:
        """Insert a submission and return it with its assigned id."""

        created_at = _ensure_utc(message.created_at)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages (content, created_at, approved, deleted_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    message.content,
                    created_at.isoformat(),
                    1 if message.approved else 0,
                    _ensure_utc(message.deleted_at).isoformat() if message.deleted_at else None,
                ),
            )
            new_id = cur.lastrowid
        if new_id is None:
            return None
        return Message(
            id=str(new_id),
            content=message.content,
            created_at=created_at,
            approved=message.approved,
            deleted_at=message.deleted_at,
        )

    def count_messages(self) -> int:
        with self._connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS total FROM messages WHERE {_VISIBLE}").fetchone()
        return int(row["total"])

    def soft_delete_message(self, message_id: int) -> bool:
        """Hide a message from every future fetch; True when a row changed."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE messages SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now.isoformat(), message_id),
            )
            return cur.rowcount > 0

    def test_connection(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1 FROM messages LIMIT 1").fetchone()
        except sqlite3.Error:
            LOGGER.exception("SQLite connection check failed for %s", self._db_path)
            return False
        return True


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=str(row["id"]),
        content=row["content"],
        created_at=_parse_timestamp(row["created_at"]),
        approved=bool(row["approved"]),
        deleted_at=_parse_timestamp(row["deleted_at"]),
    )
