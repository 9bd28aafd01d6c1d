"""Sink that reports detections through logging."""

from __future__ import annotations

import logging
from typing import Optional

from adapters.notification_formatting import format_notification
from core.models import Detection

LOGGER = logging.getLogger(__name__)


class LoggingSink:
    """Log one line per detection; used when desktop sinks are disabled."""

    def __init__(self, sender_aliases: Optional[dict[str, str]] = None, redact: bool = False) -> None:
        self._sender_aliases = sender_aliases or {}
        self._redact = redact

    async def on_detection(self, detection: Detection) -> None:
        LOGGER.info(
            format_notification(detection, self._sender_aliases, mode="line", redact=self._redact),
            extra={"otp_code": detection.code},
        )
