"""Shared notification formatting helpers.

Keeping formatting here prevents drift between sinks and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

from typing import Optional

from core.models import Detection

NOTIFICATION_TITLE = "OTP Detected & Copied"


def format_sender_label(sender: str, sender_aliases: Optional[dict[str, str]] = None) -> str:
    """Return a human-friendly sender label, using configured aliases."""

    alias = (sender_aliases or {}).get(sender)
    if not alias:
        return sender
    return f"{alias} ({sender})"


def mask_code(code: str) -> str:
    return "*" * len(code)


def _format_text(detection: Detection, sender: str, code: str) -> str:
    """Two-line body used by desktop notifications."""

    return f"Code: {code}\nFrom: {sender}"


def _format_line(detection: Detection, sender: str, code: str) -> str:
    """Single line used by log output and the CLI."""

    timestamp = detection.message_timestamp.astimezone().strftime("%H:%M:%S %d-%m-%Y")
    parts = [f"[{timestamp}]", code, f"from {sender}", f"(message {detection.source_message}"]
    if detection.rule_name:
        parts[-1] += f", rule {detection.rule_name}"
    parts[-1] += ")"
    return " ".join(parts)


def format_notification(
    detection: Detection,
    sender_aliases: Optional[dict[str, str]] = None,
    mode: str = "text",
    redact: bool = False,
) -> str:
    """Return the detection formatted for the requested mode."""

    sender = format_sender_label(detection.sender, sender_aliases)
    code = mask_code(detection.code) if redact else detection.code
    if mode == "text":
        return _format_text(detection, sender, code)
    if mode == "line":
        return _format_line(detection, sender, code)
    raise ValueError(f"Unsupported notification format: {mode}")
