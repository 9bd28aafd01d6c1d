"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from core.errors import DispatchFailure


@dataclass(frozen=True)
class Message:
    """One row from the message log, as seen by the core."""

    sequence_id: int
    body: str
    sender: str
    timestamp: datetime
    is_outgoing: bool = False


@dataclass(frozen=True)
class Candidate:
    """A validated code produced by a single extraction call."""

    raw_match: str
    captured_value: str
    rule_name: str


@dataclass(frozen=True)
class Detection:
    """An OTP found in one message, handed to dispatch sinks exactly once."""

    code: str
    sender: str
    source_message: int
    detected_at: datetime
    message_timestamp: datetime
    rule_name: str = ""


class MonitorPhase(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    IDLE = "idle"
    POLLING = "polling"


@dataclass(frozen=True)
class MonitorState:
    """Read-only snapshot published by the monitor after every change."""

    phase: MonitorPhase = MonitorPhase.STOPPED
    last_detection: Optional[Detection] = None
    detection_count: int = 0
    status_text: str = "Ready"

    @property
    def is_running(self) -> bool:
        return self.phase in (MonitorPhase.IDLE, MonitorPhase.POLLING)


@dataclass
class CycleReport:
    """Outcome of one poll cycle."""

    messages_seen: int = 0
    messages_skipped: int = 0
    duplicates: int = 0
    detections: List[Detection] = field(default_factory=list)
    dispatch_failures: List[DispatchFailure] = field(default_factory=list)
    error: Optional[str] = None
    watermark: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and not self.dispatch_failures
