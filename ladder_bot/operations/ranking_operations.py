"""
Ranking Operations

The ranking store of the ladder. Within every category the ranks of the
rankings are exactly 1..N at each commit point:

- inserts take max(rank) + 1 while holding the category lock
- swaps move one row through a negative placeholder so that
  (category_id, rank) stays unique after each statement
- removals re-densify in two bulk updates (negate-and-shift, then restore sign)
- rank writes only match rows still at the rank this transaction read, and
  the category is re-checked for 1..N before commit; a writer in another
  process that got there first turns into ConstraintConflictError

Every public mutation accepts an optional session. Without one it owns its
transaction, holds the category lock through commit and publishes a ranking
event afterwards. With one, the caller holds the lock and publishes.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.config import Config
from ladder_bot.data_models.ladder import Actor, MatchOutcome, RankIntegrityReport, RankingRow
from ladder_bot.database.models import (
    AuditAction, Challenge, ChallengeStatus, Ranking, Team
)
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.base import LadderOperationsBase
from ladder_bot.operations.freeze_operations import FreezeOperations
from ladder_bot.utils.ladder_exceptions import (
    AlreadyInCategoryError, CategoryMismatchError, ConstraintConflictError, NotFoundError, ValidationError
)
from ladder_bot.utils.time_parser import format_remaining, to_naive_utc, utc_now


class RankingOperations(LadderOperationsBase):
    """Rank store for ladder categories"""

    # Read helpers

    async def get_category_rankings(self, category_id: int) -> List[Ranking]:
        """All rankings of a category in rank order, teams loaded"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Ranking)
                .where(Ranking.category_id == category_id)
                .options(selectinload(Ranking.team).selectinload(Team.members))
                .order_by(Ranking.rank)
            )
            return list(result.scalars().all())

    async def get_standings(self, category_id: int, now: Optional[datetime] = None) -> List[RankingRow]:
        """Category standings ready for display"""
        now = to_naive_utc(now) or utc_now()
        rows = []
        for ranking in await self.get_category_rankings(category_id):
            frozen = FreezeOperations.is_frozen(ranking.team, now)
            rows.append(RankingRow(
                rank=ranking.rank,
                team_id=ranking.team_id,
                team_name=ranking.team.name,
                points=ranking.points,
                wins=ranking.wins,
                losses=ranking.losses,
                streak=ranking.streak,
                is_frozen=frozen,
                frozen_until_label=format_remaining(ranking.team.frozen_until, now) if frozen else None
            ))
        return rows

    async def get_ranking(
        self,
        team_id: int,
        category_id: int,
        session: Optional[AsyncSession] = None
    ) -> Optional[Ranking]:
        if session is not None:
            return await self._find_ranking(session, team_id, category_id)
        async with self.db.get_session() as s:
            return await self._find_ranking(s, team_id, category_id)

    async def verify_rank_permutation(
        self,
        category_id: int,
        session: Optional[AsyncSession] = None
    ) -> RankIntegrityReport:
        """Check that the ranks of a category are exactly 1..N"""
        async def _verify(s: AsyncSession) -> RankIntegrityReport:
            result = await s.execute(
                select(Ranking.rank).where(Ranking.category_id == category_id)
            )
            ranks = list(result.scalars().all())
            count = len(ranks)
            seen = set()
            duplicates = set()
            for rank in ranks:
                if rank in seen:
                    duplicates.add(rank)
                seen.add(rank)
            return RankIntegrityReport(
                category_id=category_id,
                count=count,
                duplicates=sorted(duplicates),
                missing=[r for r in range(1, count + 1) if r not in seen],
                out_of_range=sorted(r for r in seen if r < 1 or r > count)
            )

        if session is not None:
            return await _verify(session)
        async with self.db.get_session() as s:
            return await _verify(s)

    # Mutations

    async def insert_at_next_rank(
        self,
        team_id: int,
        category_id: int,
        session: Optional[AsyncSession] = None
    ) -> Ranking:
        """
        Add a team to the bottom of a category with default stats.

        Args:
            team_id: Team joining the category
            category_id: Target category
            session: Optional existing session; the caller must hold the category lock

        Returns:
            The new Ranking

        Raises:
            AlreadyInCategoryError: If the team is already ranked in the category
            NotFoundError: If the team does not exist
            ConstraintConflictError: If a concurrent writer won after the retry
        """
        async def _insert(s: AsyncSession) -> Ranking:
            if await self._find_ranking(s, team_id, category_id):
                raise AlreadyInCategoryError(team_id, category_id)
            if not await s.get(Team, team_id):
                raise NotFoundError("Team", team_id)

            max_rank = await s.scalar(
                select(func.max(Ranking.rank)).where(Ranking.category_id == category_id)
            )
            ranking = Ranking(
                team_id=team_id,
                category_id=category_id,
                rank=(max_rank or 0) + 1,
                points=Config.STARTING_POINTS,
                wins=0,
                losses=0,
                streak=0
            )
            s.add(ranking)
            await self._flush_or_conflict(s, "insert_at_next_rank")
            await self._ensure_dense(s, category_id, "insert_at_next_rank")
            return ranking

        ranking = await self._execute(session, [category_id], "insert_at_next_rank", _insert)
        self.logger.info(f"Team {team_id} joined category {category_id} at rank {ranking.rank}")
        if session is None:
            await self._publish(category_id, "ranking_inserted", {'team_id': team_id, 'rank': ranking.rank})
        return ranking

    async def swap_ranks(
        self,
        category_id: int,
        team_a_id: int,
        team_b_id: int,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> None:
        """
        Exchange the ranks of two teams in the same category.

        When an actor is given the swap is an admin action and is audited.

        Raises:
            NotFoundError: If either team is not ranked anywhere
            CategoryMismatchError: If the teams are not both ranked in this category
            ValidationError: If both ids name the same team
        """
        if actor is not None:
            self._require_admin(actor, "swap ranks")
        if team_a_id == team_b_id:
            raise ValidationError("A team cannot be swapped with itself.")

        async def _swap(s: AsyncSession):
            ranking_a = await self._require_ranking(s, team_a_id, category_id, other_team_id=team_b_id)
            ranking_b = await self._require_ranking(s, team_b_id, category_id, other_team_id=team_a_id)
            old_a, old_b = ranking_a.rank, ranking_b.rank

            await self._swap_rows(s, ranking_a, ranking_b, "swap_ranks")

            if actor is not None:
                team_b = await s.get(Team, team_b_id)
                await AuditOperations.record(
                    s,
                    actor.user_id,
                    AuditAction.SWAP_RANKS,
                    team_id=team_a_id,
                    category_id=category_id,
                    old_values={'rank': old_a, 'other_team_id': team_b_id, 'other_rank': old_b},
                    new_values={'rank': old_b, 'other_team_id': team_b_id, 'other_rank': old_a},
                    notes=notes or f"Swapped rank with {team_b.name}"
                )
            return old_a, old_b

        old_a, old_b = await self._execute(session, [category_id], "swap_ranks", _swap)
        self.logger.info(f"Swapped ranks in category {category_id}: team {team_a_id} {old_a}->{old_b}, team {team_b_id} {old_b}->{old_a}")
        if session is None:
            await self._publish(category_id, "ranks_swapped", {
                'team_a_id': team_a_id, 'team_a_rank': old_b,
                'team_b_id': team_b_id, 'team_b_rank': old_a,
            })

    async def move_rank(
        self,
        actor: Actor,
        category_id: int,
        team_id: int,
        direction: str,
        notes: Optional[str] = None
    ) -> Ranking:
        """
        Move a team one position up or down by swapping with its neighbour.

        Args:
            actor: Acting admin
            category_id: Category of the ranking
            team_id: Team to move
            direction: "up" (towards rank 1) or "down"
            notes: Optional admin notes
        """
        self._require_admin(actor, "move ranks")
        if direction not in ('up', 'down'):
            raise ValidationError("Direction must be 'up' or 'down'.")

        async def _move(s: AsyncSession) -> Ranking:
            ranking = await self._require_ranking(s, team_id, category_id)
            target_rank = ranking.rank - 1 if direction == 'up' else ranking.rank + 1

            result = await s.execute(
                select(Ranking)
                .where(Ranking.category_id == category_id, Ranking.rank == target_rank)
                .with_for_update()
            )
            neighbour = result.scalar_one_or_none()
            if neighbour is None:
                edge = "top" if direction == 'up' else "bottom"
                raise ValidationError(f"This team is already at the {edge} of the ladder.")

            old_rank = ranking.rank
            await self._swap_rows(s, ranking, neighbour, "move_rank")

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.MOVE_RANK,
                team_id=team_id,
                category_id=category_id,
                old_values={'rank': old_rank},
                new_values={'rank': ranking.rank, 'displaced_team_id': neighbour.team_id},
                notes=notes
            )
            return ranking

        ranking = await self._run_locked([category_id], "move_rank", _move)
        self.logger.info(f"Moved team {team_id} {direction} to rank {ranking.rank} in category {category_id}")
        await self._publish(category_id, "rank_moved", {'team_id': team_id, 'rank': ranking.rank})
        return ranking

    async def apply_match_result(
        self,
        category_id: int,
        winner_team_id: int,
        loser_team_id: int,
        winner_score: int,
        loser_score: int,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> MatchOutcome:
        """
        Apply a completed match to both rankings.

        The winner gains a win, extends or restarts its win streak and gains
        points; the loser mirrors that with a loss. If the winner was ranked
        below the loser the two ranks are swapped, otherwise ranks hold.

        Returns:
            MatchOutcome with the ranks before and after
        """
        if winner_team_id == loser_team_id:
            raise ValidationError("Winner and loser must be different teams.")
        if winner_score < 0 or loser_score < 0:
            raise ValidationError("Scores cannot be negative.")
        now = to_naive_utc(now) or utc_now()

        async def _apply(s: AsyncSession) -> MatchOutcome:
            winner = await self._require_ranking(s, winner_team_id, category_id, other_team_id=loser_team_id)
            loser = await self._require_ranking(s, loser_team_id, category_id, other_team_id=winner_team_id)
            winner_before, loser_before = winner.rank, loser.rank

            winner.wins += 1
            winner.streak = 1 if winner.streak < 0 else winner.streak + 1
            winner.points += Config.WIN_POINTS
            winner.last_match_at = now

            loser.losses += 1
            loser.streak = -1 if loser.streak > 0 else loser.streak - 1
            loser.points = max(0, loser.points - Config.LOSS_POINTS)
            loser.last_match_at = now

            await self._flush_or_conflict(s, "apply_match_result")

            if winner_before > loser_before:
                await self._swap_rows(s, winner, loser, "apply_match_result")

            return MatchOutcome(
                category_id=category_id,
                winner_team_id=winner_team_id,
                loser_team_id=loser_team_id,
                winner_rank_before=winner_before,
                winner_rank_after=winner.rank,
                loser_rank_before=loser_before,
                loser_rank_after=loser.rank
            )

        outcome = await self._execute(session, [category_id], "apply_match_result", _apply)
        self.logger.info(
            f"Match result in category {category_id}: team {winner_team_id} beat team {loser_team_id} "
            f"{winner_score}-{loser_score} (ranks {outcome.winner_rank_before}->{outcome.winner_rank_after}, "
            f"{outcome.loser_rank_before}->{outcome.loser_rank_after})"
        )
        if session is None:
            await self._publish(category_id, "match_result", self.outcome_event(outcome))
        return outcome

    async def remove_from_category(
        self,
        category_id: int,
        team_id: int,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
        session: Optional[AsyncSession] = None
    ) -> None:
        """
        Delete a team's ranking and close the gap it leaves.

        Pending challenges of the team in this category are cancelled, since
        they could never be played.
        """
        if actor is not None:
            self._require_admin(actor, "remove teams from the ladder")

        async def _remove(s: AsyncSession) -> int:
            ranking = await self._require_ranking(s, team_id, category_id)
            removed_rank = ranking.rank
            snapshot = ranking.stats_snapshot()

            result = await s.execute(
                delete(Ranking)
                .where(Ranking.id == ranking.id, Ranking.rank == removed_rank)
                .execution_options(synchronize_session="evaluate")
            )
            if result.rowcount != 1:
                raise ConstraintConflictError("remove_from_category", f"team {team_id} moved off rank {removed_rank}")
            await self._densify_after(s, category_id, removed_rank)
            await self._ensure_dense(s, category_id, "remove_from_category")

            await s.execute(
                update(Challenge)
                .where(
                    Challenge.ladder_category_id == category_id,
                    Challenge.status == ChallengeStatus.PENDING,
                    or_(Challenge.challenger_team_id == team_id, Challenge.challenged_team_id == team_id)
                )
                .values(status=ChallengeStatus.CANCELLED, responded_at=utc_now())
                .execution_options(synchronize_session="fetch")
            )

            if actor is not None:
                await AuditOperations.record(
                    s,
                    actor.user_id,
                    AuditAction.REMOVE_FROM_CATEGORY,
                    team_id=team_id,
                    category_id=category_id,
                    old_values=snapshot,
                    new_values=None,
                    notes=notes
                )
            return removed_rank

        removed_rank = await self._execute(session, [category_id], "remove_from_category", _remove)
        self.logger.info(f"Removed team {team_id} (rank {removed_rank}) from category {category_id}")
        if session is None:
            await self._publish(category_id, "ranking_removed", {'team_id': team_id, 'rank': removed_rank})

    async def edit_stats(
        self,
        actor: Actor,
        category_id: int,
        team_id: int,
        points: Optional[int] = None,
        wins: Optional[int] = None,
        losses: Optional[int] = None,
        streak: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Ranking:
        """Admin correction of a ranking's stats; rank is never edited here"""
        self._require_admin(actor, "edit team stats")
        for label, value in (('Points', points), ('Wins', wins), ('Losses', losses)):
            if value is not None and value < 0:
                raise ValidationError(f"{label} cannot be negative.")

        async def _edit(s: AsyncSession) -> Ranking:
            ranking = await self._require_ranking(s, team_id, category_id)
            before = ranking.stats_snapshot()

            if points is not None:
                ranking.points = points
            if wins is not None:
                ranking.wins = wins
            if losses is not None:
                ranking.losses = losses
            if streak is not None:
                ranking.streak = streak

            await self._flush_or_conflict(s, "edit_stats")
            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.EDIT_STATS,
                team_id=team_id,
                category_id=category_id,
                old_values=before,
                new_values=ranking.stats_snapshot(),
                notes=notes
            )
            return ranking

        ranking = await self._run_locked([category_id], "edit_stats", _edit)
        self.logger.info(f"Stats of team {team_id} in category {category_id} edited by {actor.user_id}")
        await self._publish(category_id, "stats_edited", {'team_id': team_id})
        return ranking

    async def seed_ranking(
        self,
        actor: Actor,
        category_id: int,
        team_id: int,
        notes: Optional[str] = None
    ) -> Ranking:
        """Admin shortcut that ranks a team without a join request"""
        self._require_admin(actor, "seed teams")

        async def _seed(s: AsyncSession) -> Ranking:
            ranking = await self.insert_at_next_rank(team_id, category_id, session=s)
            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.SEED_RANKING,
                team_id=team_id,
                category_id=category_id,
                old_values=None,
                new_values=ranking.stats_snapshot(),
                notes=notes
            )
            return ranking

        ranking = await self._run_locked([category_id], "seed_ranking", _seed)
        await self._publish(category_id, "ranking_inserted", {'team_id': team_id, 'rank': ranking.rank})
        return ranking

    # Internals

    @staticmethod
    def outcome_event(outcome: MatchOutcome) -> dict:
        return {
            'winner_team_id': outcome.winner_team_id,
            'loser_team_id': outcome.loser_team_id,
            'winner_rank': outcome.winner_rank_after,
            'loser_rank': outcome.loser_rank_after,
            'ranks_swapped': outcome.ranks_swapped,
        }

    @staticmethod
    async def _find_ranking(session: AsyncSession, team_id: int, category_id: int) -> Optional[Ranking]:
        result = await session.execute(
            select(Ranking)
            .where(Ranking.team_id == team_id, Ranking.category_id == category_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _require_ranking(
        self,
        session: AsyncSession,
        team_id: int,
        category_id: int,
        other_team_id: Optional[int] = None
    ) -> Ranking:
        """Load a ranking or explain why it is missing"""
        ranking = await self._find_ranking(session, team_id, category_id)
        if ranking:
            return ranking

        ranked_elsewhere = await session.scalar(
            select(func.count(Ranking.id)).where(Ranking.team_id == team_id)
        )
        if ranked_elsewhere and other_team_id is not None:
            raise CategoryMismatchError(team_id, other_team_id)
        raise NotFoundError("Ranking", f"team {team_id} in category {category_id}")

    async def _swap_rows(self, session: AsyncSession, first: Ranking, second: Ranking, operation: str):
        """
        Exchange two ranks through a negative placeholder.

        Each step only matches the row at the rank read earlier in this
        transaction. A row moved by another writer since then (another bot
        instance on the same database) aborts the swap with
        ConstraintConflictError, which the locked runner retries on fresh state.
        """
        await self._flush_or_conflict(session, operation)
        first_rank, second_rank = first.rank, second.rank

        await self._set_rank(session, first.id, first_rank, -first_rank, operation)
        await self._set_rank(session, second.id, second_rank, first_rank, operation)
        await self._set_rank(session, first.id, -first_rank, second_rank, operation)
        await self._ensure_dense(session, first.category_id, operation)

    @staticmethod
    async def _set_rank(session: AsyncSession, ranking_id: int, expected: int, new_rank: int, operation: str):
        try:
            result = await session.execute(
                update(Ranking)
                .where(Ranking.id == ranking_id, Ranking.rank == expected)
                .values(rank=new_rank)
                .execution_options(synchronize_session="evaluate")
            )
        except IntegrityError as e:
            raise ConstraintConflictError(operation, str(e.orig)) from e
        if result.rowcount != 1:
            raise ConstraintConflictError(operation, f"ranking {ranking_id} is no longer at rank {expected}")

    async def _ensure_dense(self, session: AsyncSession, category_id: int, operation: str):
        """Abort the transaction unless the category's ranks are still exactly 1..N"""
        report = await self.verify_rank_permutation(category_id, session=session)
        if not report.is_valid:
            raise ConstraintConflictError(
                operation,
                f"category {category_id} ranks not 1..{report.count} "
                f"(duplicates={report.duplicates}, missing={report.missing}, out_of_range={report.out_of_range})"
            )

    @staticmethod
    async def _densify_after(session: AsyncSession, category_id: int, removed_rank: int):
        """Shift every rank below the removed one up by one without ever duplicating a rank"""
        await session.execute(
            update(Ranking)
            .where(Ranking.category_id == category_id, Ranking.rank > removed_rank)
            .values(rank=-(Ranking.rank - 1))
            .execution_options(synchronize_session="fetch")
        )
        await session.execute(
            update(Ranking)
            .where(Ranking.category_id == category_id, Ranking.rank < 0)
            .values(rank=-Ranking.rank)
            .execution_options(synchronize_session="fetch")
        )
