"""
Eligibility calculator tests

Pure rule checks, no database involved.
"""

import itertools

import pytest

from ladder_bot.utils.eligibility import EligibilityCalculator, EligibilityResult
from ladder_bot.utils.ladder_exceptions import EligibilityReason


def evaluate(**overrides):
    args = dict(
        challenger_rank=5,
        target_rank=2,
        challenge_range=5,
        target_team_id=2,
        challenger_team_id=1,
        is_target_frozen=False,
        has_pending_challenge_to_target=False,
        challenger_is_complete=True,
    )
    args.update(overrides)
    return EligibilityCalculator.evaluate(**args)


class TestEvaluate:

    def test_upward_challenge_within_range_is_allowed(self):
        result = evaluate()
        assert result.allowed
        assert result.reason is None

    def test_distance_equal_to_range_is_allowed(self):
        assert evaluate(challenger_rank=7, target_rank=2, challenge_range=5).allowed

    def test_distance_beyond_range_is_refused(self):
        result = evaluate(challenger_rank=8, target_rank=2, challenge_range=5)
        assert result.reason == EligibilityReason.RANGE_EXCEEDED

    def test_self_challenge(self):
        result = evaluate(target_team_id=1)
        assert not result.allowed
        assert result.reason == EligibilityReason.SELF_CHALLENGE

    def test_duplicate_pending(self):
        assert evaluate(has_pending_challenge_to_target=True).reason == EligibilityReason.DUPLICATE_PENDING

    def test_frozen_target(self):
        assert evaluate(is_target_frozen=True).reason == EligibilityReason.TARGET_FROZEN

    def test_incomplete_roster(self):
        assert evaluate(challenger_is_complete=False).reason == EligibilityReason.INCOMPLETE_ROSTER

    def test_lateral_challenge_is_refused(self):
        assert evaluate(challenger_rank=3, target_rank=3).reason == EligibilityReason.NOT_UPWARD

    def test_downward_challenge_is_refused(self):
        assert evaluate(challenger_rank=2, target_rank=4).reason == EligibilityReason.NOT_UPWARD

    def test_first_failing_rule_is_reported(self):
        result = evaluate(
            target_team_id=1,
            is_target_frozen=True,
            challenger_is_complete=False,
            challenger_rank=1,
            target_rank=9
        )
        assert result.reason == EligibilityReason.SELF_CHALLENGE

        result = evaluate(is_target_frozen=True, challenger_is_complete=False)
        assert result.reason == EligibilityReason.TARGET_FROZEN

    @pytest.mark.parametrize("challenger_rank,target_rank", [(1, 1), (1, 2), (3, 10), (4, 4), (2, 50)])
    def test_never_allows_downward_or_lateral_regardless_of_other_inputs(self, challenger_rank, target_rank):
        for frozen, pending, complete, challenge_range in itertools.product(
            (False, True), (False, True), (False, True), (1, 5, 100)
        ):
            assert not EligibilityCalculator.can_challenge(
                challenger_rank, target_rank, challenge_range, 2, 1, frozen, pending, complete
            )


class TestRosterCompleteness:

    def test_two_members_is_complete(self):
        assert EligibilityCalculator.is_team_complete(2, "Anything")

    def test_single_captain_with_recorded_partner(self):
        assert EligibilityCalculator.is_team_complete(1, "Ana & Bea")

    def test_single_captain_alone(self):
        assert not EligibilityCalculator.is_team_complete(1, "Ana")

    def test_empty_team(self):
        assert not EligibilityCalculator.is_team_complete(0, "Ana & Bea")


def test_result_is_truthy_only_when_allowed():
    assert EligibilityResult(True)
    assert not EligibilityResult(False, EligibilityReason.NOT_UPWARD)


def test_every_reason_has_a_distinct_message():
    messages = [reason.user_message for reason in EligibilityReason]
    assert len(set(messages)) == len(messages)
