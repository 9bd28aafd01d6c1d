"""Ports (interfaces) used by the core monitor.

Ports define the minimal contracts for the message source, state storage and
dispatch sinks so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from core.models import Detection, Message


class MessageSourcePort(Protocol):
    """Read-only access to the append-only message log.

    Every method raises ``SourceUnavailable`` when the backing store cannot be
    opened or queried.
    """

    def check_available(self) -> None:
        ...

    def fetch_since(self, low_watermark: int, limit: int) -> Sequence[Message]:
        """Messages with sequence_id > low_watermark, oldest first."""
        ...

    def latest_sequence_id(self) -> int:
        ...


class StatePort(Protocol):
    """Durable state owned by the monitor."""

    def get_value(self, key: str) -> Optional[int]:
        ...

    def set_value(self, key: str, value: int) -> None:
        ...

    def is_seen(self, fingerprint: str) -> bool:
        ...

    def mark_seen(self, fingerprint: str) -> None:
        ...

    def save_detection(self, detection: Detection) -> None:
        ...

    def recent_detections(self, limit: int) -> List[Detection]:
        ...

    def cleanup_seen(self, ttl_days: int) -> int:
        ...


class DispatchSink(Protocol):
    """Side effect for a detection, such as a clipboard write."""

    async def on_detection(self, detection: Detection) -> None:
        ...
