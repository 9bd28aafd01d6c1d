"""Desktop notification sink for macOS.

Raises a Notification Center banner through ``osascript`` so no extra
framework bindings are needed.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from adapters.notification_formatting import NOTIFICATION_TITLE, format_notification
from core.models import Detection

OSASCRIPT = "/usr/bin/osascript"


def applescript_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def build_notification_script(title: str, body: str, sound: Optional[str] = None) -> str:
    script = f'display notification "{applescript_escape(body)}" with title "{applescript_escape(title)}"'
    if sound:
        script += f' sound name "{applescript_escape(sound)}"'
    return script


class NotificationSink:
    """Sink that shows the code and sender in a desktop notification."""

    def __init__(
        self,
        sender_aliases: Optional[dict[str, str]] = None,
        sound: Optional[str] = "default",
        osascript: str = OSASCRIPT,
    ) -> None:
        self._sender_aliases = sender_aliases or {}
        self._sound = sound
        self._osascript = osascript

    async def on_detection(self, detection: Detection) -> None:
        """Show the notification; raises if osascript fails."""

        body = format_notification(detection, self._sender_aliases, mode="text")
        script = build_notification_script(NOTIFICATION_TITLE, body, self._sound)
        process = await asyncio.create_subprocess_exec(
            self._osascript,
            "-e",
            script,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise RuntimeError(f"osascript exited with {process.returncode}: {detail}")
