"""
Bot-wide constants for the ladder Discord bot.

Display values used by the embeds and cogs. Ladder rules (points, ranges,
expiry) live in Config.
"""

class PaginationConstants:
    """Constants for paginated displays."""

    # Rankings shown per /rankings page
    RANKINGS_PAGE_SIZE = 20

    # Audit entries shown by /admin-audit-log
    AUDIT_LOG_LIMIT = 15

class UIConstants:
    """Constants for Discord UI elements."""

    # Embed colors
    DEFAULT_EMBED_COLOR = 0x3498db  # Blue
    GOLD_RANK_COLOR = 0xffd700     # Gold for the rank 1 team
    ERROR_COLOR = 0xe74c3c         # Red for errors
    SUCCESS_COLOR = 0x2ecc71       # Green for success
    WARNING_COLOR = 0xe67e22       # Orange for warnings

    # Emoji for UI elements
    TROPHY_EMOJI = "🏆"
    FROZEN_EMOJI = "🧊"
    SWORDS_EMOJI = "⚔️"
    STREAK_UP_EMOJI = "🔥"
    STREAK_DOWN_EMOJI = "❄️"
