"""OTP pattern library (core domain).

Rules are kept in a fixed priority order: a keyword gate, then service-specific
rules, then general rules. Every candidate a rule produces goes through
``is_valid_code`` before it is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from core.errors import ConfigError
from core.models import Candidate

# ASCII-only case folding keeps results independent of the interpreter locale.
FLAGS = re.IGNORECASE | re.ASCII

OTP_KEYWORDS: Tuple[str, ...] = (
    "verification",
    "verify",
    "code",
    "pin",
    "otp",
    "security",
    "access",
    "authentication",
    "confirm",
    "temporary",
    "login",
    "signin",
    "account",
    "password",
    "passcode",
    "unlock",
    "activate",
    "validate",
    "valid",
)

BLOCKLIST = frozenset(
    ["0000", "1111", "2222", "3333", "4444", "5555", "6666", "7777", "8888", "9999", "1234", "4321"]
)

MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 8

_ALNUM_RE = re.compile(r"[A-Za-z0-9]+", re.ASCII)
_TOKEN = r"([A-Za-z0-9]{3,8})"


@dataclass(frozen=True)
class PatternRule:
    """Compiled extraction rule."""

    name: str
    tier: int
    pattern: re.Pattern

    def first_match(self, text: str) -> Optional[Candidate]:
        """Return the first structural match, before validation.

        The value is the first non-empty capture group, or the whole match
        for rules without groups.
        """

        match = self.pattern.search(text)
        if match is None:
            return None
        captured = next((group for group in match.groups() if group), match.group(0))
        return Candidate(raw_match=match.group(0), captured_value=captured, rule_name=self.name)


def is_valid_code(value: str) -> bool:
    """Return True when a candidate looks like a real OTP."""

    code = value.strip()
    if not MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH:
        return False
    if not _ALNUM_RE.fullmatch(code):
        return False
    if not any(ch.isdigit() for ch in code):
        return False
    if code in BLOCKLIST:
        return False
    return len(set(code)) > 1


def _rule(name: str, tier: int, regex: str, flags: int = FLAGS) -> PatternRule:
    return PatternRule(name=name, tier=tier, pattern=re.compile(regex, flags))


SERVICE_RULES: Tuple[PatternRule, ...] = (
    _rule("apple", 1, r"Apple.{0,20}?\b(\d{6})\b"),
    _rule("google", 1, r"\bG-(\d{6})\b|Google.{0,20}?\b(\d{6})\b"),
    _rule("microsoft", 1, r"Microsoft.{0,20}?\b(\d{6})\b"),
    _rule("banking", 1, r"(?:bank|chase|wells|citi|bofa).{0,20}?\b(\d{4,8})\b"),
)

GENERAL_RULES: Tuple[PatternRule, ...] = (
    _rule("digits_4", 2, r"\b\d{4}\b"),
    _rule("digits_5", 2, r"\b\d{5}\b"),
    _rule("digits_6", 2, r"\b\d{6}\b"),
    _rule("digits_7", 2, r"\b\d{7}\b"),
    _rule("digits_8", 2, r"\b\d{8}\b"),
    # Case matters for these three, so they skip IGNORECASE.
    _rule("alnum_upper", 2, r"\b[A-Z0-9]{3,8}\b", re.ASCII),
    _rule("alnum_lower", 2, r"\b[a-z0-9]{3,8}\b", re.ASCII),
    _rule("alnum_mixed", 2, r"\b[A-Za-z0-9]{3,8}\b", re.ASCII),
    _rule("keyword_prefix", 2, r"(?:code|verification|verify|pin|otp)[\s:]*" + _TOKEN + r"\b"),
    _rule("keyword_suffix", 2, r"\b" + _TOKEN + r"\s*(?:is your|code)"),
    _rule("quoted", 2, r'"' + _TOKEN + r'"'),
    _rule("parenthesized", 2, r"\(" + _TOKEN + r"\)"),
    _rule("action_prefix", 2, r"\b(?:use|enter|type)[\s:]*" + _TOKEN + r"\b"),
    _rule("access_code", 2, r"(?:security|access)\s*code[\s:]*" + _TOKEN + r"\b"),
)


class PatternLibrary:
    """Ordered rule set plus the keyword gate used by the extractor."""

    def __init__(
        self,
        service_rules: Sequence[PatternRule] = SERVICE_RULES,
        general_rules: Sequence[PatternRule] = GENERAL_RULES,
        keywords: Iterable[str] = OTP_KEYWORDS,
    ) -> None:
        self.service_rules: Tuple[PatternRule, ...] = tuple(service_rules)
        self.general_rules: Tuple[PatternRule, ...] = tuple(general_rules)
        self.keywords: Tuple[str, ...] = tuple(dict.fromkeys(k.lower() for k in keywords if k))
        self._gate = re.compile("|".join(re.escape(k) for k in self.keywords), FLAGS)

    @property
    def rules(self) -> Tuple[PatternRule, ...]:
        return self.service_rules + self.general_rules

    def has_keyword(self, text: str) -> bool:
        """Tier 0: cheap precision guard against bare numeric runs."""

        if not self.keywords:
            return False
        return self._gate.search(text) is not None

    @classmethod
    def from_config(cls, patterns_config: Optional[dict]) -> "PatternLibrary":
        """Build the default library extended with configured rules.

        Configured service rules go ahead of the built-in ones so that a
        user-supplied sender format wins over the generic provider rules.
        """

        patterns_config = patterns_config or {}
        custom = build_service_rules(patterns_config.get("service_rules", []) or [])
        keywords = list(OTP_KEYWORDS) + list(patterns_config.get("extra_keywords", []) or [])
        return cls(service_rules=custom + list(SERVICE_RULES), keywords=keywords)


def build_service_rules(rules_config: Iterable[dict]) -> List[PatternRule]:
    """Normalize service rule configs and compile their regex.

    Disabled entries are dropped; a bad regex fails loudly at startup instead
    of silently never matching.
    """

    compiled: List[PatternRule] = []
    for rule in rules_config:
        if not rule.get("enabled", True):
            continue
        name = rule.get("name")
        regex = rule.get("regex")
        if not name or not regex:
            raise ConfigError(f"Service rule needs 'name' and 'regex': {rule!r}")
        try:
            compiled.append(_rule(str(name), 1, str(regex)))
        except re.error as exc:
            raise ConfigError(f"Invalid regex for service rule {name!r}: {exc}") from exc
    return compiled
