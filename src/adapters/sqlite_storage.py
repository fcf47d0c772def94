"""SQLite storage adapter.

Implements the core HistoryStorePort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Optional

from core.models import FollowUpRecord, HistoryEntry, MessageKind


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the HistoryStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - history: per-conversation message history, trimmed to a cap
        - lead_sends: last lead-tool send time per conversation
        - daily_sends: outbound sends per day and conversation (rate caps)
        - follow_ups: follow-ups sent per conversation in its current status
        - follow_up_sends: follow-ups per day and conversation (follow-up caps)
        - statistics: named counters (messages, replies, rule hits, results)
        """

        with self._connect() as conn:
            # history keeps only the most recent lines per conversation; it is
            # the context passed to reply generation and intent decisions.
            # Fields:
            # - id: auto-increment primary key, also the ordering key
            # - conversation_id: normalized conversation id
            # - role: user / assistant / system
            # - content: message or reply text
            # - kind: TEXT / CARD / SPOTLIGHT
            # - title, source_info: card title and spotlight source, if any
            # - created_at: ISO timestamp of the line
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'TEXT',
                    title TEXT,
                    source_info TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_conversation ON history (conversation_id, id)"
            )
            # lead_sends backs the minimum resend interval for AI lead tools.
            # Fields:
            # - conversation_id: normalized conversation id (PRIMARY KEY)
            # - last_sent_at: unix timestamp of the last successful tool send
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lead_sends (
                    conversation_id TEXT PRIMARY KEY,
                    last_sent_at REAL NOT NULL
                )
                """
            )
            # daily_sends survives restarts so the daily caps are not reset by
            # restarting the watcher.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_sends (
                    day TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    count INTEGER NOT NULL,
                    PRIMARY KEY (day, conversation_id)
                )
                """
            )
            # follow_ups drives the template sequence of re-engagement messages.
            # Fields:
            # - conversation_id: normalized conversation id (PRIMARY KEY)
            # - status: no_response / no_contact when the last follow-up was sent
            # - count: follow-ups sent since the status last changed
            # - last_sent_at: unix timestamp of the last follow-up
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS follow_ups (
                    conversation_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    count INTEGER NOT NULL,
                    last_sent_at REAL NOT NULL
                )
                """
            )
            # follow_up_sends has the daily_sends shape; follow-ups have their own caps.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS follow_up_sends (
                    day TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    count INTEGER NOT NULL,
                    PRIMARY KEY (day, conversation_id)
                )
                """
            )
            # statistics is a flat counter table; rule hits use "rule_hits:<name>".
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statistics (
                    name TEXT PRIMARY KEY,
                    value REAL NOT NULL
                )
                """
            )

    def append(self, conversation_id: str, entry: HistoryEntry, limit: int) -> None:
        """Append a history line and drop lines beyond ``limit``."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO history (conversation_id, role, content, kind, title, source_info, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    entry.role,
                    entry.content,
                    entry.kind.value,
                    entry.title,
                    entry.source_info,
                    entry.timestamp.isoformat(),
                ),
            )
            if limit > 0:
                conn.execute(
                    """
                    DELETE FROM history
                    WHERE conversation_id = ?
                      AND id NOT IN (
                        SELECT id FROM history WHERE conversation_id = ? ORDER BY id DESC LIMIT ?
                      )
                    """,
                    (conversation_id, conversation_id, limit),
                )

    def read(self, conversation_id: str, limit: int) -> list[HistoryEntry]:
        """Return up to ``limit`` most recent lines, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, content, kind, title, source_info, created_at
                FROM history
                WHERE conversation_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        return [
            HistoryEntry(
                role=row["role"],
                content=row["content"],
                timestamp=datetime.fromisoformat(row["created_at"]),
                kind=MessageKind(row["kind"]),
                title=row["title"] or "",
                source_info=row["source_info"] or "",
            )
            for row in reversed(rows)
        ]

    def get_last_lead_sent(self, conversation_id: str) -> Optional[float]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_sent_at FROM lead_sends WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        return float(row["last_sent_at"]) if row else None

    def record_lead_sent(self, conversation_id: str, sent_at: float) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO lead_sends (conversation_id, last_sent_at)
                VALUES (?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET last_sent_at = excluded.last_sent_at
                """,
                (conversation_id, sent_at),
            )

    def record_send(self, conversation_id: str, day: date) -> None:
        """Count one successful outbound send for the daily caps."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO daily_sends (day, conversation_id, count)
                VALUES (?, ?, 1)
                ON CONFLICT(day, conversation_id) DO UPDATE SET count = count + 1
                """,
                (day.isoformat(), conversation_id),
            )

    def sent_counts(self, day: date) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT conversation_id, count FROM daily_sends WHERE day = ?",
                (day.isoformat(),),
            ).fetchall()
        return {row["conversation_id"]: int(row["count"]) for row in rows}

    def get_follow_up(self, conversation_id: str) -> Optional[FollowUpRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT status, count, last_sent_at FROM follow_ups WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return FollowUpRecord(status=row["status"], count=int(row["count"]), last_sent_at=float(row["last_sent_at"]))

    def record_follow_up(self, conversation_id: str, status: str, sent_at: float, day: date) -> None:
        """Count one follow-up; a different status restarts the count at 1."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO follow_ups (conversation_id, status, count, last_sent_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    count = CASE WHEN status = excluded.status THEN count + 1 ELSE 1 END,
                    status = excluded.status,
                    last_sent_at = excluded.last_sent_at
                """,
                (conversation_id, status, sent_at),
            )
            conn.execute(
                """
                INSERT INTO follow_up_sends (day, conversation_id, count)
                VALUES (?, ?, 1)
                ON CONFLICT(day, conversation_id) DO UPDATE SET count = count + 1
                """,
                (day.isoformat(), conversation_id),
            )

    def follow_up_counts(self, day: date) -> dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT conversation_id, count FROM follow_up_sends WHERE day = ?",
                (day.isoformat(),),
            ).fetchall()
        return {row["conversation_id"]: int(row["count"]) for row in rows}

    def increment_stat(self, name: str, amount: float = 1) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO statistics (name, value)
                VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = value + excluded.value
                """,
                (name, amount),
            )

    def record_result(self, success: bool, latency: float) -> None:
        """Record one settled reply task (success flag and latency in seconds)."""

        self.increment_stat("tasks_succeeded" if success else "tasks_failed")
        self.increment_stat("latency_total", latency)

    def get_statistics(self) -> dict[str, Any]:
        """Return counters plus derived success rate and average latency."""

        with self._connect() as conn:
            rows = conn.execute("SELECT name, value FROM statistics").fetchall()
        counters = {row["name"]: row["value"] for row in rows}
        succeeded = int(counters.pop("tasks_succeeded", 0))
        failed = int(counters.pop("tasks_failed", 0))
        latency_total = float(counters.pop("latency_total", 0.0))
        rule_hits = {
            name.split(":", 1)[1]: int(value)
            for name, value in counters.items()
            if name.startswith("rule_hits:")
        }
        totals = {name: int(value) for name, value in counters.items() if not name.startswith("rule_hits:")}
        settled = succeeded + failed
        return {
            **totals,
            "tasks_succeeded": succeeded,
            "tasks_failed": failed,
            "success_rate": succeeded / settled if settled else 0.0,
            "average_latency": latency_total / settled if settled else 0.0,
            "rule_hits": rule_hits,
        }

    def daily_totals(self, days: int = 7) -> list[tuple[str, int]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT day, SUM(count) AS total
                FROM daily_sends
                GROUP BY day
                ORDER BY day DESC
                LIMIT ?
                """,
                (days,),
            ).fetchall()
        return [(row["day"], int(row["total"])) for row in rows]

    def recent_history(self, limit: int = 200) -> list[dict[str, Any]]:
        """Latest history lines across all conversations, newest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, conversation_id, role, kind, content, created_at
                FROM history
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]

    def cleanup_history(self, keep_days: int) -> int:
        """Delete history lines older than ``keep_days`` and return the number removed."""

        cutoff_iso = (datetime.now() - timedelta(days=keep_days)).isoformat()
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM history WHERE created_at < ?", (cutoff_iso,))
            return cur.rowcount
