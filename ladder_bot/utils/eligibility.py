from dataclasses import dataclass
from typing import Optional

from ladder_bot.config import Config
from ladder_bot.utils.ladder_exceptions import EligibilityReason


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of an eligibility check; `reason` is set whenever `allowed` is False"""
    allowed: bool
    reason: Optional[EligibilityReason] = None

    def __bool__(self) -> bool:
        return self.allowed


class EligibilityCalculator:
    """Pure challenge eligibility rules, usable without a live store"""

    @staticmethod
    def is_team_complete(member_count: int, team_name: str = "") -> bool:
        """
        Check whether a team has the roster required to challenge

        A single-captain team counts as complete when its name already
        records the partner manually (e.g. "Ana & Bea").

        Args:
            member_count: Number of registered members
            team_name: Display name of the team

        Returns:
            True if the team may act as challenger
        """
        if member_count >= Config.MIN_ROSTER_SIZE:
            return True
        return member_count == 1 and " & " in (team_name or "")

    @staticmethod
    def evaluate(
        challenger_rank: int,
        target_rank: int,
        challenge_range: int,
        target_team_id: int,
        challenger_team_id: int,
        is_target_frozen: bool,
        has_pending_challenge_to_target: bool,
        challenger_is_complete: bool
    ) -> EligibilityResult:
        """
        Decide whether the challenger may challenge the target

        Checks run in a fixed order so the first failing rule is the
        reported reason.

        Args:
            challenger_rank: Challenger's current rank (1 = best)
            target_rank: Target's current rank
            challenge_range: Maximum upward rank distance for the category
            target_team_id: Team being challenged
            challenger_team_id: Team issuing the challenge
            is_target_frozen: Whether the target is effectively frozen now
            has_pending_challenge_to_target: Pending challenge already exists for this ordered pair
            challenger_is_complete: Whether the challenger has a full roster

        Returns:
            EligibilityResult with the first failing reason, if any
        """
        if challenger_team_id == target_team_id:
            return EligibilityResult(False, EligibilityReason.SELF_CHALLENGE)
        if has_pending_challenge_to_target:
            return EligibilityResult(False, EligibilityReason.DUPLICATE_PENDING)
        if is_target_frozen:
            return EligibilityResult(False, EligibilityReason.TARGET_FROZEN)
        if not challenger_is_complete:
            return EligibilityResult(False, EligibilityReason.INCOMPLETE_ROSTER)
        if target_rank >= challenger_rank:
            return EligibilityResult(False, EligibilityReason.NOT_UPWARD)
        if challenger_rank - target_rank > challenge_range:
            return EligibilityResult(False, EligibilityReason.RANGE_EXCEEDED)
        return EligibilityResult(True)

    @staticmethod
    def can_challenge(
        challenger_rank: int,
        target_rank: int,
        challenge_range: int,
        target_team_id: int,
        challenger_team_id: int,
        is_target_frozen: bool,
        has_pending_challenge_to_target: bool,
        challenger_is_complete: bool
    ) -> bool:
        """Boolean form of evaluate()"""
        return EligibilityCalculator.evaluate(
            challenger_rank,
            target_rank,
            challenge_range,
            target_team_id,
            challenger_team_id,
            is_target_frozen,
            has_pending_challenge_to_target,
            challenger_is_complete
        ).allowed
