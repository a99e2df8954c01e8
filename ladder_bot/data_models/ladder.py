"""
Ladder data models

Immutable data transfer objects passed between the Discord layer and the
ladder operations.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Actor:
    """Caller identity supplied by the identity provider (Discord)."""
    user_id: int
    is_admin: bool = False


@dataclass(frozen=True)
class MatchOutcome:
    """Rank and stat movement produced by a single match result."""
    category_id: int
    winner_team_id: int
    loser_team_id: int
    winner_rank_before: int
    winner_rank_after: int
    loser_rank_before: int
    loser_rank_after: int

    @property
    def ranks_swapped(self) -> bool:
        return self.winner_rank_before != self.winner_rank_after


@dataclass(frozen=True)
class RankIntegrityReport:
    """Result of checking that a category's ranks are exactly 1..N."""
    category_id: int
    count: int
    duplicates: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)
    out_of_range: List[int] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (self.duplicates or self.missing or self.out_of_range)


@dataclass(frozen=True)
class RankingRow:
    """One line of a category standings table."""
    rank: int
    team_id: int
    team_name: str
    points: int
    wins: int
    losses: int
    streak: int
    is_frozen: bool
    frozen_until_label: Optional[str] = None
