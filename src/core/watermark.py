"""Persisted "highest sequence id processed" cursor."""

from __future__ import annotations

import logging

from core.ports import StatePort

LOGGER = logging.getLogger(__name__)

WATERMARK_KEY = "last-processed-sequence-id"


class Watermark:
    """Monotone cursor stored through a StatePort.

    A missing value reads as 0, which means "process everything".
    """

    def __init__(self, store: StatePort, key: str = WATERMARK_KEY) -> None:
        self._store = store
        self._key = key

    def read(self) -> int:
        return self._store.get_value(self._key) or 0

    def is_initialized(self) -> bool:
        return self._store.get_value(self._key) is not None

    def advance(self, new_value: int) -> bool:
        """Move the cursor forward; lower or equal values are a no-op."""

        current = self.read()
        if new_value <= current:
            if new_value < current:
                LOGGER.debug("Ignoring watermark rewind %s -> %s", current, new_value)
            return False
        self._store.set_value(self._key, new_value)
        return True

    def reset(self) -> None:
        """Explicit rewind to 0; the only way the cursor moves backwards."""

        self._store.set_value(self._key, 0)
