"""
Housekeeping Cog - Background Tasks

Runs the periodic sweep that moves overdue pending challenges to expired.
Until the sweep runs, an overdue challenge stays visible as pending.
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from datetime import datetime, timezone

from ladder_bot.config import Config
from ladder_bot.utils.interaction_helpers import admin_only
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class HousekeepingCog(commands.Cog):
    """Background maintenance and cleanup tasks"""

    def __init__(self, bot):
        self.bot = bot
        self.challenge_ops = bot.challenge_ops
        self.logger = logger
        self.expire_overdue_challenges.change_interval(minutes=Config.EXPIRY_SWEEP_MINUTES)

    async def cog_load(self):
        self.expire_overdue_challenges.start()
        self.logger.info("HousekeepingCog: Background tasks started")

    async def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.expire_overdue_challenges.cancel()
        self.logger.info("HousekeepingCog: Background tasks stopped")

    @tasks.loop(minutes=30)
    async def expire_overdue_challenges(self):
        """Background sweep of overdue pending challenges"""
        try:
            count = await self.challenge_ops.cleanup_expired_challenges()
            if count > 0:
                self.logger.info(f"Expired {count} overdue challenges")
        except Exception as e:
            self.logger.error(f"Error in challenge expiry task: {e}", exc_info=True)

    @expire_overdue_challenges.before_loop
    async def before_expiry_task(self):
        """Wait for bot to be ready before starting the sweep"""
        await self.bot.wait_until_ready()

    @app_commands.command(
        name="admin-expire-challenges",
        description="Expire overdue pending challenges now (Admin only)"
    )
    @admin_only()
    async def admin_expire_challenges(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)

        count = await self.challenge_ops.cleanup_expired_challenges()

        embed = discord.Embed(
            title="✅ Sweep Complete",
            description=f"Expired **{count}** overdue challenges.",
            color=discord.Color.green(),
            timestamp=datetime.now(timezone.utc)
        )
        if count == 0:
            embed.description = "No overdue challenges found."
            embed.color = discord.Color.blue()

        await interaction.followup.send(embed=embed)
        self.logger.info(f"Manual challenge sweep by {interaction.user.id}: {count} expired")


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
