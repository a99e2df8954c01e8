"""
Join Request Operations

Teams ask to enter a category; an admin approves (which ranks the team at the
bottom of the category) or rejects. Approval re-checks that the team is not
ranked yet inside the category lock, so a double approval leaves exactly one
ranking behind.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.models import AuditAction, JoinRequest, JoinRequestStatus, LadderCategory, Ranking, Team
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.base import LadderOperationsBase
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.utils.ladder_exceptions import (
    AlreadyInCategoryError, InvalidTransitionError, NotFoundError, ValidationError
)
from ladder_bot.utils.time_parser import to_naive_utc, utc_now


class JoinRequestOperations(LadderOperationsBase):
    """Submission and admin review of category join requests"""

    def __init__(self, db, ranking_ops: Optional[RankingOperations] = None, publisher=None, notifier=None):
        super().__init__(db, publisher=publisher, notifier=notifier)
        self.ranking_ops = ranking_ops or RankingOperations(db, publisher=self.publisher, notifier=self.notifier)

    async def submit_request(
        self,
        actor: Actor,
        team_id: int,
        category_id: int,
        message: Optional[str] = None
    ) -> JoinRequest:
        """
        Ask for a team to be added to a category.

        Raises:
            NotFoundError: If the team or category does not exist
            AlreadyInCategoryError: If the team is already ranked there
            ValidationError: If the team already has a pending request for the category
            UnauthorizedError: If the actor is neither a member nor an admin
        """
        async def _submit(s: AsyncSession) -> JoinRequest:
            if not await s.get(Team, team_id):
                raise NotFoundError("Team", team_id)
            if not await s.get(LadderCategory, category_id):
                raise NotFoundError("Category", category_id)
            await self._require_member_or_admin(s, actor, [team_id], "request to join for this team")

            if await self.ranking_ops.get_ranking(team_id, category_id, session=s):
                raise AlreadyInCategoryError(team_id, category_id)

            pending = await s.scalar(
                select(func.count(JoinRequest.id)).where(
                    JoinRequest.team_id == team_id,
                    JoinRequest.category_id == category_id,
                    JoinRequest.status == JoinRequestStatus.PENDING
                )
            )
            if pending:
                raise ValidationError("This team already has a pending request for this category.")

            request = JoinRequest(
                team_id=team_id,
                category_id=category_id,
                status=JoinRequestStatus.PENDING,
                message=message,
                created_at=utc_now()
            )
            s.add(request)
            await self._flush_or_conflict(s, "submit_join_request")
            return request

        request = await self._run_locked([category_id], "submit_join_request", _submit)
        self.logger.info(f"Join request {request.id} submitted: team {team_id} -> category {category_id}")
        return request

    async def approve(
        self,
        actor: Actor,
        request_id: int,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Ranking:
        """
        Approve a pending join request and rank the team at the bottom of the category.

        Returns:
            The new Ranking

        Raises:
            InvalidTransitionError: If the request is no longer pending
            AlreadyInCategoryError: If the team got ranked in the meantime
        """
        self._require_admin(actor, "approve join requests")
        now = to_naive_utc(now) or utc_now()
        category_id = await self._category_of(request_id)

        async def _approve(s: AsyncSession) -> Ranking:
            request = await self._load_request(s, request_id)
            if request.status != JoinRequestStatus.PENDING:
                raise InvalidTransitionError("Join request", request_id, request.status.value, "approved")

            ranking = await self.ranking_ops.insert_at_next_rank(request.team_id, category_id, session=s)

            request.status = JoinRequestStatus.APPROVED
            request.responded_at = now
            request.responded_by = actor.user_id
            request.admin_notes = notes

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.APPROVE_JOIN_REQUEST,
                team_id=request.team_id,
                category_id=category_id,
                old_values={'request_id': request_id, 'status': JoinRequestStatus.PENDING.value},
                new_values={'request_id': request_id, 'status': JoinRequestStatus.APPROVED.value, 'rank': ranking.rank},
                notes=notes
            )
            return ranking

        ranking = await self._run_locked([category_id], "approve_join_request", _approve)
        self.logger.info(f"Join request {request_id} approved by {actor.user_id}: team {ranking.team_id} at rank {ranking.rank}")
        await self._publish(category_id, "ranking_inserted", {'team_id': ranking.team_id, 'rank': ranking.rank})
        return ranking

    async def reject(
        self,
        actor: Actor,
        request_id: int,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> JoinRequest:
        """Reject a pending join request; rankings are untouched"""
        self._require_admin(actor, "reject join requests")
        now = to_naive_utc(now) or utc_now()
        category_id = await self._category_of(request_id)

        async def _reject(s: AsyncSession) -> JoinRequest:
            request = await self._load_request(s, request_id)
            if request.status != JoinRequestStatus.PENDING:
                raise InvalidTransitionError("Join request", request_id, request.status.value, "rejected")

            request.status = JoinRequestStatus.REJECTED
            request.responded_at = now
            request.responded_by = actor.user_id
            request.admin_notes = notes

            await AuditOperations.record(
                s,
                actor.user_id,
                AuditAction.REJECT_JOIN_REQUEST,
                team_id=request.team_id,
                category_id=category_id,
                old_values={'request_id': request_id, 'status': JoinRequestStatus.PENDING.value},
                new_values={'request_id': request_id, 'status': JoinRequestStatus.REJECTED.value},
                notes=notes
            )
            return request

        request = await self._run_locked([category_id], "reject_join_request", _reject)
        self.logger.info(f"Join request {request_id} rejected by {actor.user_id}")
        return request

    async def get_request(self, request_id: int) -> Optional[JoinRequest]:
        async with self.db.get_session() as s:
            result = await s.execute(
                select(JoinRequest)
                .where(JoinRequest.id == request_id)
                .options(selectinload(JoinRequest.team), selectinload(JoinRequest.category))
            )
            return result.scalar_one_or_none()

    async def get_pending_requests(self, category_id: Optional[int] = None) -> List[JoinRequest]:
        """Pending requests, oldest first"""
        async with self.db.get_session() as s:
            query = (
                select(JoinRequest)
                .where(JoinRequest.status == JoinRequestStatus.PENDING)
                .options(selectinload(JoinRequest.team), selectinload(JoinRequest.category))
            )
            if category_id is not None:
                query = query.where(JoinRequest.category_id == category_id)
            result = await s.execute(query.order_by(JoinRequest.created_at, JoinRequest.id))
            return list(result.scalars().all())

    async def _category_of(self, request_id: int) -> int:
        async with self.db.get_session() as s:
            category_id = await s.scalar(
                select(JoinRequest.category_id).where(JoinRequest.id == request_id)
            )
        if category_id is None:
            raise NotFoundError("Join request", request_id)
        return category_id

    @staticmethod
    async def _load_request(session: AsyncSession, request_id: int) -> JoinRequest:
        result = await session.execute(
            select(JoinRequest)
            .where(JoinRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError("Join request", request_id)
        return request
