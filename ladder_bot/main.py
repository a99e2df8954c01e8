import asyncio
import logging
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from ladder_bot.config import Config
from ladder_bot.database.database import Database
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.challenge_operations import ChallengeOperations
from ladder_bot.operations.freeze_operations import FreezeOperations
from ladder_bot.operations.join_request_operations import JoinRequestOperations
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.operations.team_operations import TeamOperations
from ladder_bot.services.notifications import DiscordNotificationDispatcher
from ladder_bot.services.ranking_events import RankingEventPublisher
from ladder_bot.utils.error_embeds import ErrorEmbeds
from ladder_bot.utils.ladder_exceptions import LadderException
from ladder_bot.utils.logger import setup_logger

class LadderBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.publisher: Optional[RankingEventPublisher] = None
        self.notifier: Optional[DiscordNotificationDispatcher] = None
        self.ranking_ops: Optional[RankingOperations] = None
        self.challenge_ops: Optional[ChallengeOperations] = None
        self.freeze_ops: Optional[FreezeOperations] = None
        self.join_request_ops: Optional[JoinRequestOperations] = None
        self.team_ops: Optional[TeamOperations] = None
        self.audit_ops: Optional[AuditOperations] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Ladder Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()

        # Post-commit collaborators shared by every operations object
        self.publisher = RankingEventPublisher()
        self.notifier = DiscordNotificationDispatcher(self, self.db)

        hooks = {'publisher': self.publisher, 'notifier': self.notifier}
        self.ranking_ops = RankingOperations(self.db, **hooks)
        self.challenge_ops = ChallengeOperations(self.db, ranking_ops=self.ranking_ops, **hooks)
        self.freeze_ops = FreezeOperations(self.db, **hooks)
        self.join_request_ops = JoinRequestOperations(self.db, ranking_ops=self.ranking_ops, **hooks)
        self.team_ops = TeamOperations(self.db, ranking_ops=self.ranking_ops, **hooks)
        self.audit_ops = AuditOperations(self.db)

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.logger.info("Ladder Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'ladder_bot.cogs.ladder',
            'ladder_bot.cogs.admin',
            'ladder_bot.cogs.housekeeping'
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync (instant updates)
                self.logger.info(f"Attempting to sync commands to {len(guild_ids)} guild(s): {guild_ids}...")

                total_synced = 0
                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")
                        total_synced += len(synced)
                    except discord.errors.Forbidden:
                        self.logger.error(f"Permission error syncing to guild {guild_id}. Ensure the bot has the 'application.commands' scope and is in the guild.", exc_info=True)
                    except discord.errors.HTTPException as e:
                        self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}", exc_info=True)

                self.logger.info(f"Multi-guild sync complete: {total_synced} total command instances deployed")
            else:
                # Global sync (can take up to 1 hour)
                self.logger.info("Attempting to sync commands globally... (Note: This can take up to an hour to propagate)")
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
        except discord.HTTPException as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Ladder | /rankings")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        original = error.original if isinstance(error, app_commands.CommandInvokeError) else error

        if isinstance(original, LadderException):
            # Expected rule violations; the user message says what went wrong
            self.logger.info(f"Command '{command_name}' by {interaction.user.id} refused: {original}")
            error_embed = ErrorEmbeds.from_exception(original)
        elif isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            error_embed = discord.Embed(
                title="❌ Administrative Privileges Required",
                description="This command is restricted to ladder administrators only.",
                color=discord.Color.red()
            )
            error_embed.set_footer(text="Contact the bot owner if you believe you should have access.")
        elif isinstance(error, app_commands.CommandOnCooldown):
            error_embed = ErrorEmbeds.invalid_input(f"Command is on cooldown. Try again in {error.retry_after:.2f} seconds.")
        else:
            # Logged with traceback by ErrorEmbeds
            error_embed = ErrorEmbeds.from_exception(original)

        # Send error response
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Ladder Bot...")

        if self.publisher:
            await self.publisher.close()
        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()

    bot = LadderBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()

def run():
    """Console script entry point"""
    asyncio.run(main())

if __name__ == "__main__":
    run()
