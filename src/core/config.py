"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DedupConfig:
    """Detection deduplication settings.

    mode: "off", "per_message" (sender + code + message time) or "per_code"
    (sender + code).
    """

    mode: str = "per_message"
    ttl_days: int = 30


@dataclass(frozen=True)
class MonitorConfig:
    """Scheduling settings for the poll loop."""

    poll_interval_seconds: float = 2.0
    batch_size: int = 200
    # None leaves fetches unbounded.
    fetch_timeout_seconds: Optional[float] = None
    # When False, a first run starts at the newest message instead of 0.
    catch_up: bool = True
    redact_codes: bool = False
