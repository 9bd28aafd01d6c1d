from __future__ import annotations

from typing import Optional

import pytest

from core.watermark import WATERMARK_KEY, Watermark


class FakeState:
    def __init__(self) -> None:
        self.values: dict[str, int] = {}

    def get_value(self, key: str) -> Optional[int]:
        return self.values.get(key)

    def set_value(self, key: str, value: int) -> None:
        self.values[key] = value


def test_first_read_is_zero() -> None:
    watermark = Watermark(FakeState())

    assert watermark.read() == 0
    assert not watermark.is_initialized()


@pytest.mark.parametrize(
    "prior, values",
    [
        (0, [5, 3, 9, 9, 1]),
        (10, [4, 7]),
        (2, [2]),
        (0, [100, 200, 150, 199]),
    ],
)
def test_read_after_advances_is_max(prior: int, values: list[int]) -> None:
    state = FakeState()
    state.values[WATERMARK_KEY] = prior
    watermark = Watermark(state)

    for value in values:
        watermark.advance(value)

    assert watermark.read() == max([prior, *values])


def test_advance_reports_whether_it_moved() -> None:
    watermark = Watermark(FakeState())

    assert watermark.advance(5) is True
    assert watermark.advance(5) is False
    assert watermark.advance(4) is False
    assert watermark.read() == 5


def test_reset_is_the_only_rewind() -> None:
    state = FakeState()
    watermark = Watermark(state)
    watermark.advance(42)

    watermark.reset()

    assert watermark.read() == 0
    assert watermark.is_initialized()
    assert state.values[WATERMARK_KEY] == 0


def test_value_is_read_from_the_store() -> None:
    state = FakeState()
    Watermark(state).advance(17)

    # A new instance over the same store resumes from the persisted value.
    assert Watermark(state).read() == 17
