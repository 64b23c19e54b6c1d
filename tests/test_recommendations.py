from __future__ import annotations

import pytest

from wellness_companion.errors import ValidationError
from wellness_companion.recommendations import (
    PROFESSIONAL_SUPPORT,
    RECOMMENDATIONS,
    select_recommendations,
)


@pytest.mark.parametrize("tone", ["positive", "neutral", "negative"])
def test_each_tone_has_three_fixed_items(tone: str) -> None:
    assert select_recommendations(tone, 5) == list(RECOMMENDATIONS[tone])
    assert len(select_recommendations(tone, 5)) == 3


def test_high_intensity_negative_appends_professional_support_last() -> None:
    first = select_recommendations("negative", 8)
    second = select_recommendations("negative", 8)

    assert first == second
    assert len(first) == 4
    assert first[-1] == PROFESSIONAL_SUPPORT


def test_low_intensity_negative_has_no_professional_support() -> None:
    assert PROFESSIONAL_SUPPORT not in select_recommendations("negative", 3)


def test_threshold_is_inclusive_at_seven() -> None:
    assert select_recommendations("negative", 7)[-1] == PROFESSIONAL_SUPPORT
    assert PROFESSIONAL_SUPPORT not in select_recommendations("negative", 6)


def test_high_intensity_positive_has_no_professional_support() -> None:
    assert PROFESSIONAL_SUPPORT not in select_recommendations("positive", 10)


def test_unknown_tone_uses_neutral_list() -> None:
    assert select_recommendations("confused") == list(RECOMMENDATIONS["neutral"])
    assert select_recommendations("NEGATIVE", 9)[-1] == PROFESSIONAL_SUPPORT


@pytest.mark.parametrize("intensity", [0, 11, -1])
def test_intensity_out_of_range_is_rejected(intensity: int) -> None:
    with pytest.raises(ValidationError):
        select_recommendations("neutral", intensity)


def test_returns_fresh_list_each_call() -> None:
    items = select_recommendations("positive")
    items.append("mutated")
    assert "mutated" not in select_recommendations("positive")
