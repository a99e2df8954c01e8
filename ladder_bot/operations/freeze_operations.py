"""
Freeze Operations

Admin-controlled freeze windows. A frozen team cannot be the target of a new
challenge until its window ends or an admin unfreezes it. Freezing does not
touch any ranking, so no category lock is taken.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.models import AuditAction, Team
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.base import LadderOperationsBase
from ladder_bot.services.notifications import NotificationKind
from ladder_bot.utils.ladder_exceptions import NotFoundError, ValidationError
from ladder_bot.utils.time_parser import format_remaining, to_naive_utc, utc_now


class FreezeOperations(LadderOperationsBase):
    """Freeze and unfreeze teams"""

    @staticmethod
    def is_frozen(team: Team, as_of: Optional[datetime] = None) -> bool:
        """A team is effectively frozen only while its window is still open"""
        if not team.is_frozen or team.frozen_until is None:
            return False
        as_of = to_naive_utc(as_of) or utc_now()
        return to_naive_utc(team.frozen_until) > as_of

    async def freeze(
        self,
        actor: Actor,
        team_id: int,
        until: datetime,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> Team:
        """
        Freeze a team until `until`, replacing any existing window.

        Args:
            actor: Acting admin
            team_id: Team to freeze
            until: Instant the freeze ends; must be in the future
            reason: Optional reason shown to the team
            now: Reference instant (defaults to utc_now())
            session: Optional existing database session

        Raises:
            UnauthorizedError: If the actor is not an admin
            ValidationError: If `until` is not after `now`
            NotFoundError: If the team does not exist
        """
        self._require_admin(actor, "freeze teams")
        now = to_naive_utc(now) or utc_now()
        until = to_naive_utc(until)
        if until is None or until <= now:
            raise ValidationError("The freeze must end in the future.")

        async with self._get_session_context(session) as s:
            team = await self._get_team_for_update(s, team_id)
            before = team.freeze_snapshot()

            team.is_frozen = True
            team.frozen_until = until
            team.frozen_reason = reason
            team.frozen_by = actor.user_id
            team.frozen_at = now

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.FREEZE_TEAM,
                team_id=team.id,
                old_values=before,
                new_values=team.freeze_snapshot(),
                notes=reason
            )

        self.logger.info(f"Team {team.id} frozen until {until.isoformat()} by {actor.user_id}")
        if session is None:
            await self._notify(NotificationKind.TEAM_FROZEN, {
                'recipient_team_id': team.id,
                'team_id': team.id,
                'team_name': team.name,
                'frozen_until': until.strftime('%Y-%m-%d %H:%M UTC'),
                'remaining': format_remaining(until, now),
                'reason': reason,
            })
        return team

    async def unfreeze(
        self,
        actor: Actor,
        team_id: int,
        notes: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> Team:
        """Clear every freeze field of a team"""
        self._require_admin(actor, "unfreeze teams")

        async with self._get_session_context(session) as s:
            team = await self._get_team_for_update(s, team_id)
            before = team.freeze_snapshot()

            team.is_frozen = False
            team.frozen_until = None
            team.frozen_reason = None
            team.frozen_by = None
            team.frozen_at = None

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.UNFREEZE_TEAM,
                team_id=team.id,
                old_values=before,
                new_values=team.freeze_snapshot(),
                notes=notes
            )

        self.logger.info(f"Team {team.id} unfrozen by {actor.user_id}")
        if session is None:
            await self._notify(NotificationKind.TEAM_UNFROZEN, {
                'recipient_team_id': team.id,
                'team_id': team.id,
                'team_name': team.name,
            })
        return team

    async def get_frozen_teams(self, as_of: Optional[datetime] = None) -> List[Team]:
        """Teams whose freeze window is still open"""
        as_of = to_naive_utc(as_of) or utc_now()
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Team)
                .where(Team.is_frozen.is_(True), Team.frozen_until > as_of)
                .order_by(Team.frozen_until)
            )
            return list(result.scalars().all())

    @staticmethod
    async def _get_team_for_update(session: AsyncSession, team_id: int) -> Team:
        result = await session.execute(
            select(Team).where(Team.id == team_id).with_for_update()
        )
        team = result.scalar_one_or_none()
        if not team:
            raise NotFoundError("Team", team_id)
        return team
