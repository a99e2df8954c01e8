"""
Notification dispatch for ladder events.

Notifications are fire-and-forget: they are sent after the triggering
mutation has committed, and a failing dispatcher is logged and ignored.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional
import logging

import discord

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    CHALLENGE_CREATED = "challenge_created"
    CHALLENGE_ACCEPTED = "challenge_accepted"
    CHALLENGE_DECLINED = "challenge_declined"
    TEAM_FROZEN = "team_frozen"
    TEAM_UNFROZEN = "team_unfrozen"


class NotificationDispatcher:
    """Base dispatcher: records the request in the log only"""

    async def dispatch(self, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification {kind.value}: {payload}")

    async def safe_dispatch(self, kind: NotificationKind, payload: Dict[str, Any]) -> bool:
        """Dispatch without ever raising; returns False if delivery failed"""
        try:
            await self.dispatch(kind, payload)
            return True
        except Exception as e:
            logger.error(f"Failed to dispatch {kind.value} notification: {e}", exc_info=True)
            return False


class DiscordNotificationDispatcher(NotificationDispatcher):
    """Sends ladder notifications as Discord DMs to the members of the recipient team"""

    TITLES = {
        NotificationKind.CHALLENGE_CREATED: "⚔️ New Challenge",
        NotificationKind.CHALLENGE_ACCEPTED: "✅ Challenge Accepted",
        NotificationKind.CHALLENGE_DECLINED: "❌ Challenge Declined",
        NotificationKind.TEAM_FROZEN: "🧊 Team Frozen",
        NotificationKind.TEAM_UNFROZEN: "🔥 Team Unfrozen",
    }

    def __init__(self, bot, db):
        self.bot = bot
        self.db = db

    async def dispatch(self, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        recipient_team_id = payload.get('recipient_team_id')
        if recipient_team_id is None:
            return

        team = await self.db.get_team(recipient_team_id)
        if not team:
            logger.warning(f"Notification {kind.value} for unknown team {recipient_team_id}")
            return

        embed = discord.Embed(
            title=self.TITLES[kind],
            description=self._describe(kind, payload),
            color=discord.Color.blue(),
            timestamp=datetime.now(timezone.utc)
        )

        sent = await self._send_to_members((m.discord_id for m in team.members), embed)
        logger.info(f"Sent {kind.value} notification to {sent} member(s) of team {team.id}")

    async def _send_to_members(self, discord_ids: Iterable[int], embed: discord.Embed) -> int:
        sent = 0
        for discord_id in discord_ids:
            try:
                user = self.bot.get_user(discord_id) or await self.bot.fetch_user(discord_id)
                await user.send(embed=embed)
                sent += 1
            except discord.Forbidden:
                logger.info(f"Could not DM user {discord_id} (DMs disabled)")
            except discord.HTTPException as e:
                logger.warning(f"Error sending DM to user {discord_id}: {e}")
        return sent

    @staticmethod
    def _describe(kind: NotificationKind, payload: Dict[str, Any]) -> str:
        challenger = payload.get('challenger_team_name', 'A team')
        challenged = payload.get('challenged_team_name', 'your opponent')
        category = payload.get('category_name', 'the ladder')

        if kind == NotificationKind.CHALLENGE_CREATED:
            return f"**{challenger}** has challenged your team in **{category}**. Use `/accept` or `/decline`."
        if kind == NotificationKind.CHALLENGE_ACCEPTED:
            return f"**{challenged}** accepted your challenge in **{category}**. Time to play!"
        if kind == NotificationKind.CHALLENGE_DECLINED:
            reason: Optional[str] = payload.get('reason')
            text = f"**{challenged}** declined your challenge in **{category}**."
            return f"{text}\nReason: {reason}" if reason else text
        if kind == NotificationKind.TEAM_FROZEN:
            until = payload.get('frozen_until', 'further notice')
            reason = payload.get('reason')
            text = f"Your team **{payload.get('team_name', '')}** is frozen until {until} and cannot be challenged."
            return f"{text}\nReason: {reason}" if reason else text
        return f"Your team **{payload.get('team_name', '')}** has been unfrozen and can be challenged again."
