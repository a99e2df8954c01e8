"""
Challenge Operations

Lifecycle of ladder challenges between two ranked teams of a category:

    pending -> accepted | declined | cancelled | expired

Creation is checked by the eligibility calculator under the category lock so
that two racing creates for the same pair cannot both pass the duplicate
check. Responses use a conditional UPDATE on status = pending, so a challenge
leaves the pending state exactly once. Expiry is driven by a periodic sweep;
a pending row may stay visible for up to one sweep interval past expires_at.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.config import Config
from ladder_bot.data_models.ladder import Actor, MatchOutcome
from ladder_bot.database.models import (
    AuditAction, Challenge, ChallengeStatus, LadderCategory, LadderMatch, Team, TeamMember
)
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.base import LadderOperationsBase
from ladder_bot.operations.freeze_operations import FreezeOperations
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.services.notifications import NotificationKind
from ladder_bot.utils.eligibility import EligibilityCalculator, EligibilityResult
from ladder_bot.utils.ladder_exceptions import (
    DuplicatePendingError, EligibilityDeniedError, EligibilityReason,
    InvalidTransitionError, NotFoundError, ValidationError
)
from ladder_bot.utils.time_parser import to_naive_utc, utc_now


class ChallengeOperations(LadderOperationsBase):
    """
    Service class for challenge-related operations.

    Manages creation, responses, expiry and result reporting of challenges.
    Match results are applied through RankingOperations in the same
    transaction as the LadderMatch row.
    """

    def __init__(self, db, ranking_ops: Optional[RankingOperations] = None, publisher=None, notifier=None):
        super().__init__(db, publisher=publisher, notifier=notifier)
        self.ranking_ops = ranking_ops or RankingOperations(db, publisher=self.publisher, notifier=self.notifier)

    # Eligibility

    async def check_eligibility(
        self,
        challenger_team_id: int,
        challenged_team_id: int,
        category_id: int,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> EligibilityResult:
        """
        Gather the current ladder state and run the eligibility rules.

        Returns:
            EligibilityResult; `reason` explains a refusal
        """
        now = to_naive_utc(now) or utc_now()

        async def _check(s: AsyncSession) -> EligibilityResult:
            category = await s.get(LadderCategory, category_id)
            if not category:
                raise NotFoundError("Category", category_id)

            challenger_ranking = await self.ranking_ops.get_ranking(challenger_team_id, category_id, session=s)
            target_ranking = await self.ranking_ops.get_ranking(challenged_team_id, category_id, session=s)
            if challenger_team_id != challenged_team_id and (not challenger_ranking or not target_ranking):
                return EligibilityResult(False, EligibilityReason.NOT_RANKED)

            challenger = await s.get(Team, challenger_team_id)
            target = await s.get(Team, challenged_team_id)
            if not challenger:
                raise NotFoundError("Team", challenger_team_id)
            if not target:
                raise NotFoundError("Team", challenged_team_id)

            member_count = await s.scalar(
                select(func.count(TeamMember.id)).where(TeamMember.team_id == challenger_team_id)
            )

            return EligibilityCalculator.evaluate(
                challenger_rank=challenger_ranking.rank if challenger_ranking else 0,
                target_rank=target_ranking.rank if target_ranking else 0,
                challenge_range=category.challenge_range,
                target_team_id=challenged_team_id,
                challenger_team_id=challenger_team_id,
                is_target_frozen=FreezeOperations.is_frozen(target, now),
                has_pending_challenge_to_target=await self._has_pending(s, challenger_team_id, challenged_team_id),
                challenger_is_complete=EligibilityCalculator.is_team_complete(member_count, challenger.name)
            )

        if session is not None:
            return await _check(session)
        async with self.db.get_session() as s:
            return await _check(s)

    # Lifecycle

    async def create_challenge(
        self,
        actor: Actor,
        challenger_team_id: int,
        challenged_team_id: int,
        category_id: int,
        message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Challenge:
        """
        Create a pending challenge from one team to another.

        Args:
            actor: Member of the challenger team, or an admin
            challenger_team_id: Team issuing the challenge
            challenged_team_id: Team being challenged
            category_id: Category both teams are ranked in
            message: Optional message for the challenged team
            now: Reference instant (defaults to utc_now())

        Returns:
            The created Challenge

        Raises:
            DuplicatePendingError: If the pair already has a pending challenge
            EligibilityDeniedError: If any eligibility rule fails
            UnauthorizedError: If the actor may not act for the challenger
        """
        now = to_naive_utc(now) or utc_now()

        async def _create(s: AsyncSession) -> Challenge:
            await self._require_member_or_admin(s, actor, [challenger_team_id], "challenge for this team")

            if challenger_team_id != challenged_team_id and await self._has_pending(s, challenger_team_id, challenged_team_id):
                raise DuplicatePendingError(challenger_team_id, challenged_team_id)

            eligibility = await self.check_eligibility(
                challenger_team_id, challenged_team_id, category_id, now=now, session=s
            )
            if not eligibility:
                raise EligibilityDeniedError(eligibility.reason)

            challenge = Challenge(
                challenger_team_id=challenger_team_id,
                challenged_team_id=challenged_team_id,
                ladder_category_id=category_id,
                status=ChallengeStatus.PENDING,
                message=message,
                created_at=now,
                expires_at=now + timedelta(days=Config.CHALLENGE_EXPIRY_DAYS)
            )
            s.add(challenge)
            await self._flush_or_conflict(s, "create_challenge")
            return await self._load_challenge(s, challenge.id)

        challenge = await self._run_locked([category_id], "create_challenge", _create)
        self.logger.info(
            f"Challenge {challenge.id} created: team {challenger_team_id} -> team {challenged_team_id} "
            f"in category {category_id}"
        )

        await self._notify(NotificationKind.CHALLENGE_CREATED, self._payload(
            challenge, recipient_team_id=challenged_team_id, message=message
        ))
        return challenge

    async def accept_challenge(self, actor: Actor, challenge_id: int, now: Optional[datetime] = None) -> Challenge:
        """Challenged team (or an admin) accepts a pending challenge"""
        challenge = await self._respond(
            actor, challenge_id, ChallengeStatus.ACCEPTED, responder="challenged", now=now
        )
        await self._notify(NotificationKind.CHALLENGE_ACCEPTED, self._payload(
            challenge, recipient_team_id=challenge.challenger_team_id
        ))
        return challenge

    async def decline_challenge(
        self,
        actor: Actor,
        challenge_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Challenge:
        """Challenged team (or an admin) declines a pending challenge"""
        challenge = await self._respond(
            actor, challenge_id, ChallengeStatus.DECLINED, responder="challenged", now=now,
            decline_reason=reason
        )
        await self._notify(NotificationKind.CHALLENGE_DECLINED, self._payload(
            challenge, recipient_team_id=challenge.challenger_team_id, reason=reason
        ))
        return challenge

    async def cancel_challenge(self, actor: Actor, challenge_id: int, now: Optional[datetime] = None) -> Challenge:
        """Challenger (or an admin) withdraws a pending challenge"""
        return await self._respond(
            actor, challenge_id, ChallengeStatus.CANCELLED, responder="challenger", now=now
        )

    async def expire_challenge(self, challenge_id: int, now: Optional[datetime] = None) -> Challenge:
        """
        System transition of one overdue pending challenge to expired.

        Raises:
            ValidationError: If the challenge is not past its expiry yet
            InvalidTransitionError: If it is no longer pending
        """
        now = to_naive_utc(now) or utc_now()

        async with self._get_session_context() as s:
            challenge = await self._load_challenge(s, challenge_id)
            if challenge.status == ChallengeStatus.PENDING and now <= challenge.expires_at:
                raise ValidationError("This challenge has not expired yet.")
            await self._transition(s, challenge, ChallengeStatus.EXPIRED)
            challenge = await self._load_challenge(s, challenge_id)

        self.logger.info(f"Challenge {challenge_id} expired")
        return challenge

    async def cleanup_expired_challenges(self, now: Optional[datetime] = None) -> int:
        """
        Sweep every overdue pending challenge to expired.

        Returns:
            Number of challenges expired
        """
        now = to_naive_utc(now) or utc_now()

        async with self._get_session_context() as s:
            result = await s.execute(
                update(Challenge)
                .where(
                    Challenge.status == ChallengeStatus.PENDING,
                    Challenge.expires_at < now
                )
                .values(status=ChallengeStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        if count:
            self.logger.info(f"Expired {count} overdue challenge(s)")
        return count

    async def report_match_result(
        self,
        actor: Actor,
        challenge_id: int,
        winner_team_id: int,
        winner_score: int,
        loser_score: int,
        now: Optional[datetime] = None
    ) -> MatchOutcome:
        """
        Record the match played out of an accepted challenge and apply it to the ladder.

        The LadderMatch row and the ranking changes commit together. The
        challenge itself stays accepted.

        Raises:
            InvalidTransitionError: If the challenge is not accepted
            ValidationError: If the winner is not a participant, scores are
                invalid, or a result was already reported
        """
        if winner_score < 0 or loser_score < 0:
            raise ValidationError("Scores cannot be negative.")
        if winner_score < loser_score:
            raise ValidationError("The winner's score cannot be lower than the loser's.")
        now = to_naive_utc(now) or utc_now()

        async with self.db.get_session() as s:
            category_id = await s.scalar(
                select(Challenge.ladder_category_id).where(Challenge.id == challenge_id)
            )
        if category_id is None:
            raise NotFoundError("Challenge", challenge_id)

        async def _report(s: AsyncSession) -> MatchOutcome:
            challenge = await self._load_challenge(s, challenge_id)
            participants = (challenge.challenger_team_id, challenge.challenged_team_id)
            await self._require_member_or_admin(s, actor, participants, "report this result")

            if challenge.status != ChallengeStatus.ACCEPTED:
                raise InvalidTransitionError("Challenge", challenge_id, challenge.status.value, "completed")
            if winner_team_id not in participants:
                raise ValidationError("The winner must be one of the two teams in the challenge.")
            existing = await s.scalar(
                select(LadderMatch.id).where(LadderMatch.challenge_id == challenge_id)
            )
            if existing:
                raise ValidationError("A result has already been reported for this challenge.")

            loser_team_id = participants[1] if winner_team_id == participants[0] else participants[0]
            outcome = await self.ranking_ops.apply_match_result(
                category_id, winner_team_id, loser_team_id, winner_score, loser_score,
                now=now, session=s
            )

            s.add(LadderMatch(
                challenge_id=challenge_id,
                category_id=category_id,
                winner_team_id=winner_team_id,
                loser_team_id=loser_team_id,
                winner_score=winner_score,
                loser_score=loser_score,
                winner_rank_before=outcome.winner_rank_before,
                loser_rank_before=outcome.loser_rank_before,
                reported_by=actor.user_id,
                completed_at=now
            ))
            await self._flush_or_conflict(s, "report_match_result")
            return outcome

        outcome = await self._run_locked([category_id], "report_match_result", _report)
        self.logger.info(f"Result reported for challenge {challenge_id} by {actor.user_id}")
        await self._publish(category_id, "match_result", RankingOperations.outcome_event(outcome))
        return outcome

    # Queries

    async def get_challenge(self, challenge_id: int) -> Optional[Challenge]:
        async with self.db.get_session() as s:
            result = await s.execute(self._challenge_query().where(Challenge.id == challenge_id))
            return result.scalar_one_or_none()

    async def get_incoming_challenges(
        self,
        team_id: int,
        status: Optional[ChallengeStatus] = ChallengeStatus.PENDING
    ) -> List[Challenge]:
        """Challenges received by a team, newest first"""
        return await self._list(Challenge.challenged_team_id == team_id, status)

    async def get_outgoing_challenges(
        self,
        team_id: int,
        status: Optional[ChallengeStatus] = ChallengeStatus.PENDING
    ) -> List[Challenge]:
        """Challenges issued by a team, newest first"""
        return await self._list(Challenge.challenger_team_id == team_id, status)

    async def get_category_challenges(
        self,
        category_id: int,
        status: Optional[ChallengeStatus] = None
    ) -> List[Challenge]:
        return await self._list(Challenge.ladder_category_id == category_id, status)

    async def get_team_challenges(
        self,
        team_ids: List[int],
        status: Optional[ChallengeStatus] = ChallengeStatus.PENDING
    ) -> List[Challenge]:
        """Challenges in either direction for any of the given teams"""
        if not team_ids:
            return []
        return await self._list(
            or_(Challenge.challenger_team_id.in_(team_ids), Challenge.challenged_team_id.in_(team_ids)),
            status
        )

    # Internals

    async def _respond(
        self,
        actor: Actor,
        challenge_id: int,
        target: ChallengeStatus,
        responder: str,
        now: Optional[datetime] = None,
        decline_reason: Optional[str] = None
    ) -> Challenge:
        """Shared body of accept / decline / cancel"""
        now = to_naive_utc(now) or utc_now()
        action = {
            ChallengeStatus.ACCEPTED: "accept this challenge",
            ChallengeStatus.DECLINED: "decline this challenge",
            ChallengeStatus.CANCELLED: "cancel this challenge",
        }[target]

        async with self._get_session_context() as s:
            challenge = await self._load_challenge(s, challenge_id)
            team_id = challenge.challenged_team_id if responder == "challenged" else challenge.challenger_team_id
            as_admin = await self._require_member_or_admin(s, actor, [team_id], action)

            values = {'responded_at': now}
            if decline_reason is not None:
                values['decline_reason'] = decline_reason
            await self._transition(s, challenge, target, **values)

            if as_admin:
                await AuditOperations.record(
                    s,
                    actor.user_id,
                    AuditAction.ADMIN_CHALLENGE_RESPONSE,
                    team_id=team_id,
                    category_id=challenge.ladder_category_id,
                    old_values={'challenge_id': challenge_id, 'status': ChallengeStatus.PENDING.value},
                    new_values={'challenge_id': challenge_id, 'status': target.value},
                    notes=decline_reason
                )
            challenge = await self._load_challenge(s, challenge_id)

        self.logger.info(f"Challenge {challenge_id} {target.value} by {actor.user_id}")
        return challenge

    async def _transition(self, session: AsyncSession, challenge: Challenge, target: ChallengeStatus, **values):
        """Move a challenge out of pending; only one caller can ever succeed"""
        result = await session.execute(
            update(Challenge)
            .where(Challenge.id == challenge.id, Challenge.status == ChallengeStatus.PENDING)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await session.scalar(select(Challenge.status).where(Challenge.id == challenge.id))
            raise InvalidTransitionError("Challenge", challenge.id, current.value, target.value)

    @staticmethod
    async def _has_pending(session: AsyncSession, challenger_team_id: int, challenged_team_id: int) -> bool:
        count = await session.scalar(
            select(func.count(Challenge.id)).where(
                and_(
                    Challenge.challenger_team_id == challenger_team_id,
                    Challenge.challenged_team_id == challenged_team_id,
                    Challenge.status == ChallengeStatus.PENDING
                )
            )
        )
        return bool(count)

    @staticmethod
    def _challenge_query():
        return select(Challenge).options(
            selectinload(Challenge.challenger_team),
            selectinload(Challenge.challenged_team),
            selectinload(Challenge.category),
            selectinload(Challenge.match)
        )

    async def _load_challenge(self, session: AsyncSession, challenge_id: int) -> Challenge:
        result = await session.execute(
            self._challenge_query()
            .where(Challenge.id == challenge_id)
            .execution_options(populate_existing=True)
        )
        challenge = result.scalar_one_or_none()
        if not challenge:
            raise NotFoundError("Challenge", challenge_id)
        return challenge

    async def _list(self, condition, status: Optional[ChallengeStatus]) -> List[Challenge]:
        async with self.db.get_session() as s:
            query = self._challenge_query().where(condition)
            if status is not None:
                query = query.where(Challenge.status == status)
            result = await s.execute(query.order_by(Challenge.created_at.desc(), Challenge.id.desc()))
            return list(result.scalars().all())

    @staticmethod
    def _payload(challenge: Challenge, recipient_team_id: int, **extra) -> dict:
        payload = {
            'recipient_team_id': recipient_team_id,
            'challenge_id': challenge.id,
            'challenger_team_id': challenge.challenger_team_id,
            'challenged_team_id': challenge.challenged_team_id,
            'challenger_team_name': challenge.challenger_team.name,
            'challenged_team_name': challenge.challenged_team.name,
            'category_id': challenge.ladder_category_id,
            'category_name': challenge.category.name,
        }
        payload.update(extra)
        return payload
