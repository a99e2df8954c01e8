from typing import Optional, List, Iterable
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select
from contextlib import asynccontextmanager

from ladder_bot.config import Config
from ladder_bot.database.models import (
    Base, Ladder, LadderCategory, Team, TeamMember, Ranking
)
from ladder_bot.services.category_locks import CategoryLockRegistry
from ladder_bot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None
        # Shared by every operations object built on this database
        self.category_locks = CategoryLockRegistry()

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context will be committed together on success,
        or rolled back together on failure. Audit entries are written through
        the same session as the mutation they describe, so both land in one
        commit or neither does.

        Usage:
            async with db.transaction() as session:
                await ranking_ops.swap_ranks(..., session=session)
                # Mutation and audit entry commit together here
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Ladder operations
    async def create_ladder(self, name: str, description: str = None, created_by: int = None) -> Ladder:
        """Create a new ladder"""
        async with self.transaction() as session:
            ladder = Ladder(name=name, description=description, created_by=created_by)
            session.add(ladder)
            await session.flush()
            await session.refresh(ladder)
            return ladder

    async def create_category(
        self,
        ladder_id: int,
        name: str,
        challenge_range: int = None,
        entry_fee: int = None,
        display_order: int = 0
    ) -> LadderCategory:
        """Create a category inside a ladder"""
        async with self.transaction() as session:
            category = LadderCategory(
                ladder_id=ladder_id,
                name=name,
                challenge_range=challenge_range or Config.DEFAULT_CHALLENGE_RANGE,
                entry_fee=entry_fee,
                display_order=display_order
            )
            session.add(category)
            await session.flush()
            await session.refresh(category)
            return category

    async def get_category(self, category_id: int) -> Optional[LadderCategory]:
        async with self.get_session() as session:
            return await session.get(LadderCategory, category_id)

    async def get_category_by_name(self, name: str) -> Optional[LadderCategory]:
        async with self.get_session() as session:
            result = await session.execute(
                select(LadderCategory).where(LadderCategory.name.ilike(name))
            )
            return result.scalars().first()

    # Team operations
    async def create_team(
        self,
        name: str,
        member_discord_ids: Iterable[int] = (),
        captain_discord_id: Optional[int] = None
    ) -> Team:
        """Create a team with its roster; the first member is captain unless one is given"""
        member_ids = list(member_discord_ids)
        if captain_discord_id is None and member_ids:
            captain_discord_id = member_ids[0]

        async with self.transaction() as session:
            team = Team(name=name, created_by=captain_discord_id)
            session.add(team)
            await session.flush()

            for discord_id in member_ids:
                session.add(TeamMember(
                    team_id=team.id,
                    discord_id=discord_id,
                    is_captain=discord_id == captain_discord_id
                ))
            await session.flush()
            await session.refresh(team)
            return team

    async def get_team(self, team_id: int) -> Optional[Team]:
        """Get a team with its roster loaded"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Team).where(Team.id == team_id).options(selectinload(Team.members))
            )
            return result.scalar_one_or_none()

    async def get_teams_for_member(self, discord_id: int) -> List[Team]:
        """Get every team a Discord user plays for"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Team)
                .join(TeamMember)
                .where(TeamMember.discord_id == discord_id)
                .options(selectinload(Team.members))
                .order_by(Team.id)
            )
            return result.scalars().unique().all()

    async def get_team_ranking(self, team_id: int, category_id: int) -> Optional[Ranking]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Ranking).where(
                    Ranking.team_id == team_id,
                    Ranking.category_id == category_id
                )
            )
            return result.scalar_one_or_none()

    async def get_team_by_name(self, name: str) -> Optional[Team]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Team).where(Team.name.ilike(name)).options(selectinload(Team.members))
            )
            return result.scalars().first()

    # Autocomplete helpers
    async def search_categories(self, current: str = "", limit: int = 25) -> List[LadderCategory]:
        async with self.get_session() as session:
            query = select(LadderCategory).order_by(LadderCategory.display_order, LadderCategory.name)
            if current:
                query = query.where(LadderCategory.name.ilike(f"%{current}%"))
            result = await session.execute(query.limit(limit))
            return result.scalars().all()

    async def search_teams(self, current: str = "", limit: int = 25) -> List[Team]:
        async with self.get_session() as session:
            query = select(Team).order_by(Team.name)
            if current:
                query = query.where(Team.name.ilike(f"%{current}%"))
            result = await session.execute(query.limit(limit))
            return result.scalars().all()
