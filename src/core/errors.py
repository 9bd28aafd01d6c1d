"""Error types shared by the core and adapters.

Only resource-level failures are exceptions that cross module boundaries.
A missed extraction is normal control flow and is represented by ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from core.models import Detection


class OTPWatchError(Exception):
    """Base class for otpwatch errors."""


class ConfigError(OTPWatchError):
    """Invalid or missing configuration."""


class SourceUnavailable(OTPWatchError):
    """The message source cannot be opened or queried.

    ``reason`` is one of ``missing``, ``permission``, ``query`` or ``timeout``
    so callers can tell a missing database apart from a permission problem.
    """

    def __init__(self, message: str, reason: str = "query") -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class MalformedRecord(OTPWatchError):
    """A single message row could not be decoded."""

    def __init__(self, message: str, sequence_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.sequence_id = sequence_id


@dataclass(frozen=True)
class DispatchFailure:
    """A sink that raised while handling a detection."""

    sink: str
    detection: "Detection"
    error: str
