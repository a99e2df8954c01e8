"""
Team Operations

Admin deletion of a team. Every category the team is ranked in is locked and
re-densified, and the team's challenges, matches, join requests and roster
go with it in one transaction.
"""

from typing import List, Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.config import Config
from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.models import (
    AuditAction, Challenge, JoinRequest, LadderMatch, Ranking, Team, TeamMember
)
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.base import LadderOperationsBase
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.utils.ladder_exceptions import ConstraintConflictError, NotFoundError


class TeamOperations(LadderOperationsBase):
    """Team lifecycle operations that cut across categories"""

    def __init__(self, db, ranking_ops: Optional[RankingOperations] = None, publisher=None, notifier=None):
        super().__init__(db, publisher=publisher, notifier=notifier)
        self.ranking_ops = ranking_ops or RankingOperations(db, publisher=self.publisher, notifier=self.notifier)

    async def delete_team(self, actor: Actor, team_id: int, notes: Optional[str] = None) -> List[int]:
        """
        Delete a team and everything that references it.

        Args:
            actor: Acting admin
            team_id: Team to delete
            notes: Optional admin notes for the audit log

        Returns:
            Ids of the categories whose rankings were re-densified
        """
        self._require_admin(actor, "delete teams")

        async def _delete(s: AsyncSession, category_ids: List[int]) -> List[int]:
            team = await s.get(Team, team_id)
            if not team:
                raise NotFoundError("Team", team_id)

            result = await s.execute(
                select(Ranking).where(Ranking.team_id == team_id).order_by(Ranking.category_id)
            )
            rankings = list(result.scalars().all())
            if any(r.category_id not in category_ids for r in rankings):
                # Joined another category after the locks were chosen
                raise ConstraintConflictError("delete_team", "team rankings changed")

            removed = [dict(ranking.stats_snapshot(), category_id=ranking.category_id) for ranking in rankings]
            for ranking in rankings:
                await self.ranking_ops.remove_from_category(ranking.category_id, team_id, session=s)

            challenge_ids = select(Challenge.id).where(
                or_(Challenge.challenger_team_id == team_id, Challenge.challenged_team_id == team_id)
            )
            await s.execute(delete(LadderMatch).where(LadderMatch.challenge_id.in_(challenge_ids)))
            await s.execute(delete(Challenge).where(
                or_(Challenge.challenger_team_id == team_id, Challenge.challenged_team_id == team_id)
            ))
            await s.execute(delete(JoinRequest).where(JoinRequest.team_id == team_id))
            await s.execute(delete(TeamMember).where(TeamMember.team_id == team_id))

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.DELETE_TEAM,
                team_id=team_id,
                old_values={'name': team.name, 'rankings': removed},
                new_values=None,
                notes=notes
            )
            await s.execute(delete(Team).where(Team.id == team_id))
            return [r['category_id'] for r in removed]

        # The locked set is chosen before the transaction, so re-read it on every attempt
        for attempt in range(Config.CONFLICT_RETRIES + 1):
            category_ids = await self._ranked_categories(team_id)
            try:
                affected = await self._run_locked(
                    category_ids, "delete_team", lambda s: _delete(s, category_ids), max_retries=0
                )
                break
            except ConstraintConflictError:
                if attempt == Config.CONFLICT_RETRIES:
                    raise

        self.logger.info(f"Team {team_id} deleted by {actor.user_id}; re-ranked categories {affected}")
        for category_id in affected:
            await self._publish(category_id, "ranking_removed", {'team_id': team_id})
        return affected

    async def _ranked_categories(self, team_id: int) -> List[int]:
        async with self.db.get_session() as s:
            result = await s.execute(select(Ranking.category_id).where(Ranking.team_id == team_id))
            return sorted(result.scalars().all())
