"""
Centralized error embeds for consistent error handling across the ladder bot.

Every ladder error kind maps to its own embed title; the description is the
exception's specific user message.
"""

import discord

from ladder_bot.constants import UIConstants
from ladder_bot.utils.ladder_exceptions import (
    LadderException, NotFoundError, AlreadyInCategoryError, DuplicatePendingError,
    InvalidTransitionError, EligibilityDeniedError, ConstraintConflictError,
    UnauthorizedError, CategoryMismatchError, ValidationError
)
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    TITLES = {
        NotFoundError: "Not Found",
        AlreadyInCategoryError: "Already Ranked",
        DuplicatePendingError: "Challenge Already Pending",
        InvalidTransitionError: "Action Not Possible",
        EligibilityDeniedError: "Challenge Not Allowed",
        ConstraintConflictError: "Ladder Busy",
        UnauthorizedError: "Permission Denied",
        CategoryMismatchError: "Different Categories",
        ValidationError: "Invalid Input",
    }

    @staticmethod
    def from_exception(error: Exception) -> discord.Embed:
        """Create the embed for any exception raised by a ladder command."""
        if isinstance(error, LadderException):
            title = ErrorEmbeds.TITLES.get(type(error), "Ladder Error")
            color = UIConstants.WARNING_COLOR if isinstance(error, ConstraintConflictError) else UIConstants.ERROR_COLOR
            return discord.Embed(title=title, description=error.user_message, color=color)

        logger.error(f"Unexpected error in ladder command: {error}", exc_info=error)
        return ErrorEmbeds.command_error()

    @staticmethod
    def command_error() -> discord.Embed:
        """Create embed for unexpected command errors."""
        return discord.Embed(
            title="Command Error",
            description="An unexpected error occurred.\n\nPlease try again or contact an administrator.",
            color=UIConstants.ERROR_COLOR
        )

    @staticmethod
    def invalid_input(message: str) -> discord.Embed:
        """Create embed for invalid user input."""
        return discord.Embed(
            title="Invalid Input",
            description=message,
            color=UIConstants.ERROR_COLOR
        )

    @staticmethod
    def no_team() -> discord.Embed:
        """Create embed for users without a team."""
        return discord.Embed(
            title="No Team",
            description="You are not on any team yet. Ask your captain to add you first.",
            color=UIConstants.ERROR_COLOR
        )
