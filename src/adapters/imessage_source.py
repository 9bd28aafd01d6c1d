"""macOS Messages (chat.db) source adapter.

Reads the Messages database strictly read-only and maps rows to core
Message objects. Messages.app owns the file; we only ever SELECT from it.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import logging
import os
from pathlib import Path
import sqlite3
from typing import Iterator, List

from core.errors import MalformedRecord, SourceUnavailable
from core.models import Message

LOGGER = logging.getLogger(__name__)

DEFAULT_DB_PATH = "~/Library/Messages/chat.db"

# Messages stores dates relative to 2001-01-01 UTC; newer macOS releases use
# nanoseconds instead of seconds.
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
_NANOSECOND_THRESHOLD = 10**11

UNKNOWN_SENDER = "Unknown"

_FETCH_SQL = """
    SELECT
        message.ROWID AS rowid,
        message.text AS text,
        message.date AS date,
        message.is_from_me AS is_from_me,
        handle.id AS sender
    FROM message
    LEFT JOIN handle ON message.handle_id = handle.ROWID
    WHERE message.ROWID > ?
    ORDER BY message.ROWID ASC
    LIMIT ?
"""


def apple_timestamp_to_datetime(value) -> datetime:
    """Convert a Messages ``date`` column to an aware UTC datetime."""

    if value is None:
        return APPLE_EPOCH
    raw = int(value)
    seconds = raw / 1_000_000_000 if abs(raw) > _NANOSECOND_THRESHOLD else raw
    return APPLE_EPOCH + timedelta(seconds=seconds)


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def message_from_row(row: sqlite3.Row) -> Message:
    """Build a Message from one query row.

    Raises MalformedRecord when the row cannot be decoded.
    """

    rowid = row["rowid"]
    if not isinstance(rowid, int):
        raise MalformedRecord("Row without a usable ROWID")

    try:
        body = _text(row["text"])
    except UnicodeDecodeError as exc:
        raise MalformedRecord(f"Message {rowid} has undecodable text", sequence_id=rowid) from exc

    raw_sender = row["sender"]
    if isinstance(raw_sender, bytes):
        raw_sender = raw_sender.decode("utf-8", errors="replace")
    sender = raw_sender or UNKNOWN_SENDER

    try:
        timestamp = apple_timestamp_to_datetime(row["date"])
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedRecord(f"Message {rowid} has an invalid date", sequence_id=rowid) from exc

    return Message(
        sequence_id=rowid,
        body=body,
        sender=str(sender),
        timestamp=timestamp,
        is_outgoing=bool(row["is_from_me"]),
    )


class IMessageSource:
    """MessageSourcePort over the Messages SQLite database."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH) -> None:
        self._db_path = os.path.expanduser(db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    def _unavailable(self, exc: Exception) -> SourceUnavailable:
        if not os.path.exists(self._db_path):
            return SourceUnavailable("Messages database not found", reason="missing")
        detail = str(exc).lower()
        if isinstance(exc, PermissionError) or "unable to open" in detail or "authorization denied" in detail:
            return SourceUnavailable("Full Disk Access required", reason="permission")
        return SourceUnavailable(f"Messages database query failed: {exc}", reason="query")

    @contextmanager
    def _open(self) -> Iterator[sqlite3.Connection]:
        # One short-lived connection per call: calls arrive from worker
        # threads, and SQLite connections are bound to their thread.
        uri = f"{Path(self._db_path).resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True)
        except (sqlite3.Error, OSError) as exc:
            raise self._unavailable(exc) from exc
        conn.row_factory = sqlite3.Row
        # Bytes keep one badly encoded row from failing the whole query.
        conn.text_factory = bytes
        try:
            yield conn
        except sqlite3.Error as exc:
            raise self._unavailable(exc) from exc
        finally:
            conn.close()

    def check_available(self) -> None:
        """Raise SourceUnavailable unless the database exists and is readable."""

        if not os.path.exists(self._db_path):
            raise SourceUnavailable("Messages database not found", reason="missing")
        if not os.access(self._db_path, os.R_OK):
            raise SourceUnavailable("Full Disk Access required", reason="permission")
        with self._open() as conn:
            conn.execute("SELECT 1 FROM message LIMIT 1").fetchall()

    def latest_sequence_id(self) -> int:
        with self._open() as conn:
            row = conn.execute("SELECT MAX(ROWID) AS rowid FROM message").fetchone()
        return int(row["rowid"] or 0)

    def fetch_since(self, low_watermark: int, limit: int) -> List[Message]:
        """Return up to ``limit`` messages above the watermark, oldest first.

        Outgoing and empty messages are included so the caller's watermark
        can move past them. Undecodable rows come back with an empty body.
        """

        with self._open() as conn:
            rows = conn.execute(_FETCH_SQL, (low_watermark, limit)).fetchall()

        messages: List[Message] = []
        for row in rows:
            try:
                messages.append(message_from_row(row))
            except MalformedRecord as exc:
                LOGGER.warning("Skipping malformed message row: %s", exc)
                if exc.sequence_id is None:
                    continue
                messages.append(
                    Message(
                        sequence_id=exc.sequence_id,
                        body="",
                        sender=UNKNOWN_SENDER,
                        timestamp=APPLE_EPOCH,
                    )
                )
        return messages
