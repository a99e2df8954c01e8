"""
Audit Operations

Append-only audit trail for admin-triggered mutations. `record()` always
writes through the caller's session so the entry commits (or rolls back)
together with the mutation it describes.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ladder_bot.database.models import AuditAction, AuditEntry
from ladder_bot.utils.ladder_exceptions import LadderException
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class AuditOperations:
    """Writes and reads the ladder audit log"""

    def __init__(self, db):
        self.db = db
        self.logger = logger

    @staticmethod
    async def record(
        session: AsyncSession,
        admin_user_id: int,
        action: AuditAction,
        team_id: Optional[int] = None,
        category_id: Optional[int] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None
    ) -> AuditEntry:
        """
        Append an audit entry inside the caller's transaction.

        Args:
            session: Session of the mutation being audited
            admin_user_id: Discord ID of the acting admin
            action: Kind of mutation
            team_id: Affected team, if any
            category_id: Affected category, if any
            old_values: Snapshot before the mutation
            new_values: Snapshot after the mutation
            notes: Admin-provided notes

        Raises:
            LadderException: If the entry cannot be written; the caller's
                transaction is then rolled back as a whole
        """
        try:
            entry = AuditEntry(
                admin_user_id=admin_user_id,
                action=action,
                team_id=team_id,
                category_id=category_id,
                old_values=old_values,
                new_values=new_values,
                notes=notes
            )
            session.add(entry)
            await session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create audit log: {e}")
            raise LadderException(
                f"Failed to create audit log: {e}",
                "❌ The change could not be recorded in the audit log and was not applied."
            ) from e

        logger.info(f"Audit log created: {action.value} by {admin_user_id} on team:{team_id} category:{category_id}")
        return entry

    async def get_audit_log(
        self,
        category_id: Optional[int] = None,
        team_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        limit: int = 50
    ) -> List[AuditEntry]:
        """Most recent audit entries first, optionally filtered"""
        async with self.db.get_session() as session:
            query = select(AuditEntry)
            if category_id is not None:
                query = query.where(AuditEntry.category_id == category_id)
            if team_id is not None:
                query = query.where(AuditEntry.team_id == team_id)
            if action is not None:
                query = query.where(AuditEntry.action == action)
            query = query.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).limit(limit)

            result = await session.execute(query)
            return list(result.scalars().all())
