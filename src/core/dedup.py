"""Deduplication helpers (core domain)."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
from typing import Optional


def _normalize_sender(sender: str) -> str:
    return " ".join(sender.split()).lower()


def _timestamp_key(timestamp: datetime) -> str:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def compute_fingerprint(sender: str, code: str, timestamp: datetime, mode: str) -> Optional[str]:
    """Return a detection fingerprint hash based on dedup mode.

    ``per_message`` identifies one delivery of a code, so a message replayed
    after a crash maps to the same fingerprint. ``per_code`` also folds
    repeated sends of the same code by one sender.
    """

    if mode == "off":
        return None

    if mode == "per_message":
        payload = f"{_normalize_sender(sender)}\n{code}\n{_timestamp_key(timestamp)}"
    elif mode == "per_code":
        payload = f"{_normalize_sender(sender)}\n{code}"
    else:
        raise ValueError(f"Unsupported dedup mode: {mode}")

    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
