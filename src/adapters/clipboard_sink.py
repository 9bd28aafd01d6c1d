"""Clipboard sink: puts the detected code on the system clipboard."""

from __future__ import annotations

import asyncio
from typing import Callable

import pyperclip

from core.models import Detection


class ClipboardSink:
    """Sink that copies each detected code with pyperclip."""

    def __init__(self, copy: Callable[[str], None] = pyperclip.copy) -> None:
        self._copy = copy

    async def on_detection(self, detection: Detection) -> None:
        # pyperclip shells out to pbcopy/xclip, so keep it off the event loop.
        await asyncio.to_thread(self._copy, detection.code)
