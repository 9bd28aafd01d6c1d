from __future__ import annotations

import pytest

from core.extractor import OTPExtractor
from core.patterns import PatternLibrary


@pytest.fixture()
def extractor() -> OTPExtractor:
    return OTPExtractor()


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Your verification code is 123456", "123456"),
        ("Use code 789012 to sign in", "789012"),
        ("Your Apple ID code is 345678", "345678"),
        ("Google verification code: 567890", "567890"),
        ("Security code 234567 for your account", "234567"),
        ("PIN: 456789", "456789"),
        ("OTP 678901", "678901"),
    ],
)
def test_basic_extraction(extractor: OTPExtractor, message: str, expected: str) -> None:
    assert extractor.extract_code(message) == expected


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Apple ID verification code: 123456", "123456"),
        ("G-789012 is your Google verification code", "789012"),
        ("Microsoft account security code: 345678", "345678"),
    ],
)
def test_service_specific_messages(extractor: OTPExtractor, message: str, expected: str) -> None:
    assert extractor.extract_code(message) == expected


def test_google_prefix_is_stripped_by_service_rule(extractor: OTPExtractor) -> None:
    candidate = extractor.extract("G-789012 is your Google verification code")

    assert candidate is not None
    assert candidate.captured_value == "789012"
    assert candidate.raw_match == "G-789012"
    assert candidate.rule_name == "google"


def test_apple_rule_wins_before_general_rules(extractor: OTPExtractor) -> None:
    candidate = extractor.extract("Your Apple ID code is 345678")

    assert candidate is not None
    assert candidate.rule_name == "apple"


def test_banking_rule_accepts_short_codes(extractor: OTPExtractor) -> None:
    candidate = extractor.extract("Chase: use 2841 to verify your identity")

    assert candidate is not None
    assert candidate.captured_value == "2841"
    assert candidate.rule_name == "banking"


@pytest.mark.parametrize(
    "message",
    [
        "Hello how are you today?",
        "Meeting at 3 PM tomorrow",
        "Your order #12345 has been shipped",
        "Call me at 555-1234",
        "Temperature is 72 degrees",
        "Meeting room 1234",
        "Order number 123456",
        "Call 555-1234 for support",
    ],
)
def test_messages_without_keywords_yield_nothing(extractor: OTPExtractor, message: str) -> None:
    assert extractor.extract(message) is None


@pytest.mark.parametrize(
    "message",
    [
        "Your code is 1234",
        "Your code is 0000",
        "Your code is 4321",
        "Your verification code is 777777",
    ],
)
def test_degenerate_codes_are_never_returned(extractor: OTPExtractor, message: str) -> None:
    assert extractor.extract(message) is None


def test_rejected_candidate_moves_on_to_next_rule(extractor: OTPExtractor) -> None:
    candidate = extractor.extract("Your code is 1234. Enter 482915 to confirm")

    assert candidate is not None
    assert candidate.captured_value == "482915"
    assert candidate.rule_name == "digits_6"


def test_rejected_service_candidate_falls_back_to_general_rules(extractor: OTPExtractor) -> None:
    candidate = extractor.extract("Wells Fargo alert 0000. Your login code is 583920")

    assert candidate is not None
    assert candidate.captured_value == "583920"
    assert candidate.rule_name == "digits_6"


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Your verification code is ABC123", "ABC123"),
        ("Security code: XYZ789", "XYZ789"),
        ("Use code A1B2C3 to continue", "A1B2C3"),
    ],
)
def test_alphanumeric_codes(extractor: OTPExtractor, message: str, expected: str) -> None:
    assert extractor.extract_code(message) == expected


def test_surrounding_whitespace_is_ignored(extractor: OTPExtractor) -> None:
    assert extractor.extract_code("\n  Your verification code is 123456  \n") == "123456"


def test_empty_body_yields_nothing(extractor: OTPExtractor) -> None:
    assert extractor.extract("") is None
    assert extractor.extract("   ") is None


def test_extraction_is_deterministic(extractor: OTPExtractor) -> None:
    message = "Your Apple ID verification code is 123456. Don't share this code with anyone."
    results = {extractor.extract(message) for _ in range(50)}

    assert len(results) == 1
    assert next(iter(results)).captured_value == "123456"


def test_configured_service_rule_runs_before_general_rules() -> None:
    library = PatternLibrary.from_config(
        {"service_rules": [{"name": "acme", "regex": r"ACME code (\d{5})"}]}
    )
    extractor = OTPExtractor(library)

    candidate = extractor.extract("Ref 55512 - ACME code 66421")

    assert candidate is not None
    assert candidate.captured_value == "66421"
    assert candidate.rule_name == "acme"
    # Without the custom rule the first five-digit run wins.
    assert OTPExtractor().extract_code("Ref 55512 - ACME code 66421") == "55512"


def test_extra_keywords_open_the_gate() -> None:
    message = "Your token 839201"

    assert OTPExtractor().extract(message) is None
    library = PatternLibrary.from_config({"extra_keywords": ["token"]})
    assert OTPExtractor(library).extract_code(message) == "839201"
