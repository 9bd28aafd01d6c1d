"""SQLite state adapter.

Implements the core StatePort using a small SQLite database owned by
otpwatch. The message store itself is never written.
"""

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from core.models import Detection


class SQLiteStateStore:
    """Thin SQLite wrapper that satisfies the StatePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - state: integer key/value pairs (watermark, detection count)
        - seen: detection fingerprints for deduplication
        - detections: append-only log of emitted detections
        """

        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._connect() as conn:
            # state keeps one integer per key so a restart resumes where the
            # previous run stopped.
            # Fields:
            # - key: e.g. last-processed-sequence-id (PRIMARY KEY)
            # - value: the stored integer
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
                """
            )
            # seen stores detection fingerprints so a replayed message never
            # reaches the sinks twice.
            # Fields:
            # - fingerprint: SHA-256 hash of sender/code/time (PRIMARY KEY)
            # - first_seen: timestamp of first observation for TTL cleanup
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS seen (
                    fingerprint TEXT PRIMARY KEY,
                    first_seen TIMESTAMP NOT NULL
                )
                """
            )
            # detections is an append-only log backing `otpwatch status`.
            # Fields:
            # - id: auto-increment primary key
            # - source_message: sequence id of the message in the source log
            # - code: extracted OTP
            # - sender: handle of the sender
            # - rule_name: pattern rule that produced the code
            # - message_timestamp: when the message was received
            # - detected_at: when otpwatch found it
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS detections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_message INTEGER NOT NULL,
                    code TEXT NOT NULL,
                    sender TEXT,
                    rule_name TEXT,
                    message_timestamp TIMESTAMP,
                    detected_at TIMESTAMP
                )
                """
            )

    def get_value(self, key: str) -> Optional[int]:
        """Return the stored integer for a key, if any."""

        with self._connect() as conn:
            row = conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
        return int(row["value"]) if row else None

    def set_value(self, key: str, value: int) -> None:
        """Upsert the integer stored for a key."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO state (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, int(value)),
            )

    def is_seen(self, fingerprint: str) -> bool:
        """Check if a fingerprint has already been recorded."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM seen WHERE fingerprint = ?",
                (fingerprint,),
            ).fetchone()
        return row is not None

    def mark_seen(self, fingerprint: str) -> None:
        """Insert a fingerprint if it does not exist."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO seen (fingerprint, first_seen)
                VALUES (?, ?)
                """,
                (fingerprint, now.isoformat()),
            )

    def save_detection(self, detection: Detection) -> None:
        """Persist a detection to the append-only detections table."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO detections (
                    source_message,
                    code,
                    sender,
                    rule_name,
                    message_timestamp,
                    detected_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    detection.source_message,
                    detection.code,
                    detection.sender,
                    detection.rule_name,
                    detection.message_timestamp.isoformat(),
                    detection.detected_at.isoformat(),
                ),
            )

    def recent_detections(self, limit: int) -> List[Detection]:
        """Return the newest detections first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT source_message, code, sender, rule_name, message_timestamp, detected_at
                FROM detections
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            Detection(
                code=row["code"],
                sender=row["sender"] or "",
                source_message=int(row["source_message"]),
                detected_at=datetime.fromisoformat(row["detected_at"]),
                message_timestamp=datetime.fromisoformat(row["message_timestamp"]),
                rule_name=row["rule_name"] or "",
            )
            for row in rows
        ]

    def cleanup_seen(self, ttl_days: int) -> int:
        """Delete old fingerprints and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM seen WHERE first_seen < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount
