"""
Custom exceptions for the ladder engine with user-friendly error messages.

Every error kind carries a specific `user_message` so the Discord layer never
has to fall back to a generic "something went wrong".
"""

from enum import Enum


class EligibilityReason(Enum):
    """Why a challenge is not allowed"""
    SELF_CHALLENGE = "self_challenge"
    DUPLICATE_PENDING = "duplicate_pending"
    TARGET_FROZEN = "target_frozen"
    INCOMPLETE_ROSTER = "incomplete_roster"
    NOT_UPWARD = "not_upward"
    RANGE_EXCEEDED = "range_exceeded"
    NOT_RANKED = "not_ranked"

    @property
    def user_message(self) -> str:
        return _ELIGIBILITY_MESSAGES[self]


_ELIGIBILITY_MESSAGES = {
    EligibilityReason.SELF_CHALLENGE: "You cannot challenge your own team.",
    EligibilityReason.DUPLICATE_PENDING: "You already have a pending challenge against this team.",
    EligibilityReason.TARGET_FROZEN: "This team is frozen and cannot be challenged right now.",
    EligibilityReason.INCOMPLETE_ROSTER: "Your team needs a full roster before it can challenge.",
    EligibilityReason.NOT_UPWARD: "You can only challenge teams ranked above you.",
    EligibilityReason.RANGE_EXCEEDED: "This team is outside your challenge range.",
    EligibilityReason.NOT_RANKED: "Both teams must be ranked in this category.",
}


class LadderException(Exception):
    """Base exception for ladder engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class NotFoundError(LadderException):
    """Raised when a referenced team, ranking, challenge or join request does not exist."""
    def __init__(self, entity: str, entity_id=None):
        label = f"{entity} {entity_id}" if entity_id is not None else entity
        super().__init__(
            f"{label} not found",
            f"❌ {entity} not found."
        )
        self.entity = entity
        self.entity_id = entity_id

class AlreadyInCategoryError(LadderException):
    """Raised when a ranking already exists for a (team, category) pair."""
    def __init__(self, team_id: int, category_id: int):
        super().__init__(
            f"Team {team_id} already ranked in category {category_id}",
            "❌ This team is already ranked in this category."
        )
        self.team_id = team_id
        self.category_id = category_id

class DuplicatePendingError(LadderException):
    """Raised when a second pending challenge is created for the same ordered pair."""
    def __init__(self, challenger_team_id: int, challenged_team_id: int):
        super().__init__(
            f"Pending challenge already exists from team {challenger_team_id} to team {challenged_team_id}",
            "❌ You already have a pending challenge against this team."
        )

class InvalidTransitionError(LadderException):
    """Raised when a state transition is attempted from an incompatible state."""
    def __init__(self, entity: str, entity_id: int, current: str, target: str):
        super().__init__(
            f"{entity} {entity_id} cannot move from {current} to {target}",
            f"❌ This {entity.lower()} is already {current} and cannot be {target}."
        )
        self.current = current
        self.target = target

class EligibilityDeniedError(LadderException):
    """Raised when the eligibility calculator refuses a challenge."""
    def __init__(self, reason: EligibilityReason):
        super().__init__(
            f"Challenge not allowed: {reason.value}",
            f"❌ {reason.user_message}"
        )
        self.reason = reason

class ConstraintConflictError(LadderException):
    """Raised when a concurrent write collided on a uniqueness or ordering constraint."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Constraint conflict during {operation}: {details}",
            "❌ Someone else changed the ladder at the same time. Please try again."
        )
        self.operation = operation

class UnauthorizedError(LadderException):
    """Raised when the actor lacks the role or membership the mutation needs."""
    def __init__(self, action: str):
        super().__init__(
            f"Actor not allowed to {action}",
            f"❌ You are not allowed to {action}."
        )

class CategoryMismatchError(LadderException):
    """Raised when two rankings being swapped belong to different categories."""
    def __init__(self, team_a_id: int, team_b_id: int):
        super().__init__(
            f"Teams {team_a_id} and {team_b_id} are not ranked in the same category",
            "❌ Both teams must be ranked in the same category."
        )

class ValidationError(LadderException):
    """Raised when operation input fails validation."""
    def __init__(self, reason: str):
        super().__init__(
            f"Validation failed: {reason}",
            f"❌ {reason}"
        )
