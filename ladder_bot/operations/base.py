"""
Shared plumbing for ladder operations classes.

Provides the optional-session pattern used by every operation, the
per-category lock + transaction + bounded conflict retry wrapper, and the
best-effort post-commit hooks (ranking events and notifications).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.config import Config
from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.models import TeamMember
from ladder_bot.services.notifications import NotificationDispatcher, NotificationKind
from ladder_bot.services.ranking_events import RankingEventPublisher
from ladder_bot.utils.ladder_exceptions import ConstraintConflictError, UnauthorizedError
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class LadderOperationsBase:
    """Base class for operations that share a Database, its category locks and post-commit hooks"""

    def __init__(
        self,
        db,
        publisher: Optional[RankingEventPublisher] = None,
        notifier: Optional[NotificationDispatcher] = None
    ):
        self.db = db
        self.locks = db.category_locks
        self.publisher = publisher or RankingEventPublisher()
        self.notifier = notifier or NotificationDispatcher()
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a transactional session. Uses the provided session if available,
        otherwise opens a transaction that commits on exit.
        """
        if session:
            # Caller owns the transaction and any category lock it needs
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    async def _run_locked(
        self,
        category_ids: Iterable[int],
        operation: str,
        func: Callable[[AsyncSession], Awaitable[Any]],
        max_retries: Optional[int] = None
    ) -> Any:
        """
        Run `func` in its own transaction while holding the category locks.

        The lock is held until after commit. A ConstraintConflictError (or an
        IntegrityError surfacing at commit) is retried up to `max_retries`
        times with freshly read state before it reaches the caller. SQLite lock
        contention with another connection on the same file counts as a conflict.
        """
        if max_retries is None:
            max_retries = Config.CONFLICT_RETRIES

        category_ids = list(category_ids)
        for attempt in range(max_retries + 1):
            try:
                async with self.locks.hold_many(category_ids):
                    async with self.db.transaction() as session:
                        return await func(session)
            except IntegrityError as e:
                error = ConstraintConflictError(operation, str(e.orig))
            except OperationalError as e:
                # SQLite refuses a writer that would deadlock against another connection
                if 'database is locked' not in str(e.orig):
                    raise
                error = ConstraintConflictError(operation, str(e.orig))
            except ConstraintConflictError as e:
                error = e

            if attempt == max_retries:
                self.logger.error(f"{operation} failed after {attempt + 1} attempt(s): {error}")
                raise error
            self.logger.warning(f"Constraint conflict during {operation}, retry {attempt + 1}/{max_retries}")
            await asyncio.sleep(min(0.05 * (2 ** attempt), 0.5))

    async def _execute(
        self,
        session: Optional[AsyncSession],
        category_ids: Iterable[int],
        operation: str,
        func: Callable[[AsyncSession], Awaitable[Any]]
    ) -> Any:
        """Run `func` in the caller's session, or in an owned locked transaction"""
        if session is not None:
            return await func(session)
        return await self._run_locked(category_ids, operation, func)

    async def _flush_or_conflict(self, session: AsyncSession, operation: str):
        """Flush pending writes, translating constraint violations into ConstraintConflictError"""
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConstraintConflictError(operation, str(e.orig)) from e

    async def _is_team_member(self, session: AsyncSession, team_id: int, discord_id: int) -> bool:
        count = await session.scalar(
            select(func.count(TeamMember.id)).where(
                TeamMember.team_id == team_id,
                TeamMember.discord_id == discord_id
            )
        )
        return bool(count)

    async def _require_member_or_admin(
        self,
        session: AsyncSession,
        actor: Actor,
        team_ids: Iterable[int],
        action: str
    ) -> bool:
        """
        Ensure the actor plays for one of `team_ids` or is an admin.

        Returns:
            True if the actor is acting as admin on behalf of a team they are not on
        """
        for team_id in team_ids:
            if await self._is_team_member(session, team_id, actor.user_id):
                return False
        if actor.is_admin:
            return True
        raise UnauthorizedError(action)

    @staticmethod
    def _require_admin(actor: Actor, action: str):
        if not actor or not actor.is_admin:
            raise UnauthorizedError(action)

    async def _publish(self, category_id: int, event_type: str, data: Optional[Dict[str, Any]] = None):
        await self.publisher.publish(category_id, event_type, data)

    async def _notify(self, kind: NotificationKind, payload: Dict[str, Any]):
        await self.notifier.safe_dispatch(kind, payload)
