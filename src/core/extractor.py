"""OTP extraction over a single message body (core domain)."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from core.models import Candidate
from core.patterns import PatternLibrary, PatternRule, is_valid_code

LOGGER = logging.getLogger(__name__)


class OTPExtractor:
    """Apply a PatternLibrary to message text and return at most one code.

    Pure over its input and the rule set: the same text always yields the
    same result.
    """

    def __init__(self, library: Optional[PatternLibrary] = None) -> None:
        self._library = library or PatternLibrary()

    @property
    def library(self) -> PatternLibrary:
        return self._library

    def extract(self, body: str) -> Optional[Candidate]:
        """Return the first validated candidate, or None.

        Order:
        - keyword gate; no keyword means no code
        - service rules in declaration order
        - general rules in declaration order
        Each rule offers its first match; an invalid one moves on to the
        next rule instead of ending the search.
        """

        text = (body or "").strip()
        if not text or not self._library.has_keyword(text):
            return None

        candidate = self._first_valid(text, self._library.service_rules)
        if candidate is None:
            candidate = self._first_valid(text, self._library.general_rules)
        return candidate

    def extract_code(self, body: str) -> Optional[str]:
        candidate = self.extract(body)
        return candidate.captured_value if candidate else None

    @staticmethod
    def _first_valid(text: str, rules: Iterable[PatternRule]) -> Optional[Candidate]:
        for rule in rules:
            candidate = rule.first_match(text)
            if candidate is None:
                continue
            if is_valid_code(candidate.captured_value):
                return candidate
            LOGGER.debug("Rule %s candidate rejected by validation", rule.name)
        return None
