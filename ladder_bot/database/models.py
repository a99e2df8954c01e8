from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, BigInteger, JSON, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

from ladder_bot.config import Config

Base = declarative_base()

class ChallengeStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

class JoinRequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class AuditAction(Enum):
    """Kinds of admin-triggered mutations recorded in the audit log"""
    MOVE_RANK = "move_rank"
    SWAP_RANKS = "swap_ranks"
    EDIT_STATS = "edit_stats"
    SEED_RANKING = "seed_ranking"
    REMOVE_FROM_CATEGORY = "remove_from_category"
    FREEZE_TEAM = "freeze_team"
    UNFREEZE_TEAM = "unfreeze_team"
    APPROVE_JOIN_REQUEST = "approve_join_request"
    REJECT_JOIN_REQUEST = "reject_join_request"
    ADMIN_CHALLENGE_RESPONSE = "admin_challenge_response"
    DELETE_TEAM = "delete_team"

class Ladder(Base):
    __tablename__ = 'ladders'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)
    description = Column(Text)
    status = Column(String(20), default="active")
    max_teams = Column(Integer, default=64)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    created_by = Column(BigInteger, nullable=True)  # Discord ID of creating admin

    # Relationships
    categories = relationship("LadderCategory", back_populates="ladder", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Ladder(name='{self.name}', status='{self.status}')>"

class LadderCategory(Base):
    __tablename__ = 'ladder_categories'

    id = Column(Integer, primary_key=True)
    ladder_id = Column(Integer, ForeignKey('ladders.id'), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)

    # Maximum number of rank positions a challenger may reach upward
    challenge_range = Column(Integer, nullable=False, default=Config.DEFAULT_CHALLENGE_RANGE)
    entry_fee = Column(Integer, nullable=True)
    display_order = Column(Integer, default=0)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    ladder = relationship("Ladder", back_populates="categories")
    rankings = relationship("Ranking", back_populates="category", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('ladder_id', 'name'),
        CheckConstraint('challenge_range > 0', name='positive_challenge_range_check'),
    )

    def __repr__(self):
        return f"<LadderCategory(name='{self.name}', challenge_range={self.challenge_range})>"

class Team(Base):
    __tablename__ = 'teams'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    created_by = Column(BigInteger, nullable=True)  # Discord ID of captain

    # Freeze window: effective only while is_frozen and frozen_until is in the future
    is_frozen = Column(Boolean, default=False, nullable=False)
    frozen_until = Column(DateTime, nullable=True)
    frozen_reason = Column(String(500), nullable=True)
    frozen_by = Column(BigInteger, nullable=True)
    frozen_at = Column(DateTime, nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")
    rankings = relationship("Ranking", back_populates="team")

    def freeze_snapshot(self) -> dict:
        """Serializable view of the freeze fields for audit entries"""
        return {
            'is_frozen': bool(self.is_frozen),
            'frozen_until': self.frozen_until.isoformat() if self.frozen_until else None,
            'frozen_reason': self.frozen_reason,
            'frozen_by': self.frozen_by,
            'frozen_at': self.frozen_at.isoformat() if self.frozen_at else None,
        }

    def __repr__(self):
        return f"<Team(id={self.id}, name='{self.name}', frozen={self.is_frozen})>"

class TeamMember(Base):
    __tablename__ = 'team_members'

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey('teams.id', ondelete='CASCADE'), nullable=False, index=True)
    discord_id = Column(BigInteger, nullable=False, index=True)
    display_name = Column(String(100))
    is_captain = Column(Boolean, default=False)
    joined_at = Column(DateTime, default=func.now())

    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint('team_id', 'discord_id', name='unique_member_per_team'),
    )

    def __repr__(self):
        return f"<TeamMember(team_id={self.team_id}, discord_id={self.discord_id}, captain={self.is_captain})>"

class Ranking(Base):
    """
    A team's position inside one ladder category.

    Within a category the rank values are always a permutation of 1..N.
    Both unique constraints are the store-level backstop for concurrent
    writers; rank moves go through negative placeholders so that
    (category_id, rank) stays unique after every statement.
    """
    __tablename__ = 'ladder_rankings'

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey('ladder_categories.id'), nullable=False, index=True)

    rank = Column(Integer, nullable=False)
    points = Column(Integer, nullable=False, default=Config.STARTING_POINTS)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)  # Positive = win streak, negative = loss streak
    last_match_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    team = relationship("Team", back_populates="rankings")
    category = relationship("LadderCategory", back_populates="rankings")

    __table_args__ = (
        UniqueConstraint('team_id', 'category_id', name='uq_ranking_team_category'),
        UniqueConstraint('category_id', 'rank', name='uq_ranking_category_rank'),
    )

    def stats_snapshot(self) -> dict:
        return {
            'rank': self.rank,
            'points': self.points,
            'wins': self.wins,
            'losses': self.losses,
            'streak': self.streak,
        }

    def __repr__(self):
        return f"<Ranking(team_id={self.team_id}, category_id={self.category_id}, rank={self.rank})>"

class Challenge(Base):
    __tablename__ = 'challenges'

    id = Column(Integer, primary_key=True)
    challenger_team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    challenged_team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    ladder_category_id = Column(Integer, ForeignKey('ladder_categories.id'), nullable=False, index=True)
    status = Column(SQLEnum(ChallengeStatus), default=ChallengeStatus.PENDING, nullable=False)

    message = Column(Text, nullable=True)
    decline_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)

    # Relationships
    challenger_team = relationship("Team", foreign_keys=[challenger_team_id])
    challenged_team = relationship("Team", foreign_keys=[challenged_team_id])
    category = relationship("LadderCategory")
    match = relationship("LadderMatch", back_populates="challenge", uselist=False)

    __table_args__ = (
        Index('ix_challenges_pair_status', 'challenger_team_id', 'challenged_team_id', 'status'),
        # At most one pending challenge per ordered pair, across all categories
        Index(
            'uq_challenges_pending_pair', 'challenger_team_id', 'challenged_team_id',
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'")
        ),
    )

    def __repr__(self):
        return (
            f"<Challenge(id={self.id}, challenger={self.challenger_team_id}, "
            f"challenged={self.challenged_team_id}, status={self.status.value})>"
        )

class LadderMatch(Base):
    """Completed match played out of an accepted challenge"""
    __tablename__ = 'ladder_matches'

    id = Column(Integer, primary_key=True)
    challenge_id = Column(Integer, ForeignKey('challenges.id'), nullable=False, unique=True)
    category_id = Column(Integer, ForeignKey('ladder_categories.id'), nullable=False, index=True)
    winner_team_id = Column(Integer, ForeignKey('teams.id'), nullable=False)
    loser_team_id = Column(Integer, ForeignKey('teams.id'), nullable=False)
    winner_score = Column(Integer, nullable=False)
    loser_score = Column(Integer, nullable=False)

    # Ranks before the result was applied, for match history
    winner_rank_before = Column(Integer, nullable=True)
    loser_rank_before = Column(Integer, nullable=True)

    reported_by = Column(BigInteger, nullable=True)
    completed_at = Column(DateTime, default=func.now())

    challenge = relationship("Challenge", back_populates="match")

    def __repr__(self):
        return (
            f"<LadderMatch(challenge_id={self.challenge_id}, winner={self.winner_team_id}, "
            f"score={self.winner_score}-{self.loser_score})>"
        )

class JoinRequest(Base):
    __tablename__ = 'ladder_join_requests'

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey('teams.id'), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey('ladder_categories.id'), nullable=False, index=True)
    status = Column(SQLEnum(JoinRequestStatus), default=JoinRequestStatus.PENDING, nullable=False)

    message = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now())
    responded_at = Column(DateTime, nullable=True)
    responded_by = Column(BigInteger, nullable=True)

    team = relationship("Team")
    category = relationship("LadderCategory")

    def __repr__(self):
        return f"<JoinRequest(id={self.id}, team_id={self.team_id}, category_id={self.category_id}, status={self.status.value})>"

class AuditEntry(Base):
    """
    Immutable record of an admin-triggered mutation.

    Written in the same transaction as the mutation it describes; rows are
    never updated or deleted.
    """
    __tablename__ = 'ladder_audit_log'

    id = Column(Integer, primary_key=True)
    admin_user_id = Column(BigInteger, nullable=False, index=True)
    action = Column(SQLEnum(AuditAction), nullable=False)

    # Plain ids, not foreign keys: entries outlive deleted teams
    team_id = Column(Integer, nullable=True, index=True)
    category_id = Column(Integer, nullable=True, index=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now(), index=True)

    def __repr__(self):
        return f"<AuditEntry(action={self.action.value}, admin={self.admin_user_id}, team_id={self.team_id})>"
