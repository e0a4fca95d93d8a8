"""
Unit tests for the scorer.

Tests:
- Uniform and weighted scores
- Half-up rounding to two decimals
- Status mapping from score and termination reason
"""

import pytest

from app.domain.grading.entities import (
    AttemptStatus,
    TerminationReason,
    TestCase,
    TestOutcome,
)
from app.domain.grading.scoring import calculate_score, determine_status, round_score


def outcomes(*passed: bool):
    return [TestOutcome(index=i, name=f"t{i}", passed=p) for i, p in enumerate(passed)]


class TestCalculateScore:
    """Test score computation."""

    def test_all_passed(self):
        assert calculate_score(outcomes(True, True, True)) == 100.0

    def test_none_passed(self):
        assert calculate_score(outcomes(False, False)) == 0.0

    def test_two_of_three_rounds_half_up(self):
        assert calculate_score(outcomes(True, True, False)) == 66.67

    def test_one_of_three(self):
        assert calculate_score(outcomes(True, False, False)) == 33.33

    def test_one_of_eight_rounds_half_up(self):
        # 12.5 exactly; no rounding needed but must stay 12.5
        assert calculate_score(outcomes(True, *([False] * 7))) == 12.5

    def test_empty_battery_scores_zero(self):
        assert calculate_score([]) == 0.0

    def test_weighted(self):
        score = calculate_score(outcomes(True, False), weights=[3.0, 1.0])
        assert score == 75.0

    def test_zero_total_weight_scores_zero(self):
        assert calculate_score(outcomes(True, True), weights=[0.0, 0.0]) == 0.0

    def test_weight_length_mismatch(self):
        with pytest.raises(ValueError):
            calculate_score(outcomes(True, True), weights=[1.0])


class TestRoundScore:
    """Test clamping and rounding."""

    def test_half_up(self):
        assert round_score(12.345) == 12.35
        assert round_score(0.005) == 0.01

    def test_clamped(self):
        assert round_score(-3) == 0.0
        assert round_score(140.2) == 100.0


class TestDetermineStatus:
    """Test status mapping."""

    def test_perfect_score_passes(self):
        status = determine_status(100.0, TerminationReason.COMPLETED, 3)
        assert status == AttemptStatus.PASS

    def test_partial_score_fails(self):
        status = determine_status(66.67, TerminationReason.COMPLETED, 3)
        assert status == AttemptStatus.FAIL

    def test_timeout_is_error_even_when_partial(self):
        status = determine_status(50.0, TerminationReason.TIMEOUT, 2)
        assert status == AttemptStatus.ERROR

    def test_fault_is_error(self):
        status = determine_status(0.0, TerminationReason.FAULT, 2)
        assert status == AttemptStatus.ERROR

    def test_empty_battery_is_error(self):
        status = determine_status(0.0, TerminationReason.COMPLETED, 0)
        assert status == AttemptStatus.ERROR


class TestTestCaseWeights:
    """Test weight resolution on test cases."""

    def test_missing_weight_is_one(self):
        assert TestCase("a", "True").effective_weight == 1.0

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            TestCase("a", "True", weight=-1)

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            TestCase("", "True")
