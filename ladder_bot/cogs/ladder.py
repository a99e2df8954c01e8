"""
Ladder Cog - player-facing ladder commands

Standings, challenges and their responses, result reporting and join
requests. Ladder errors raised by the operations layer reach the bot's
app command error handler, which answers with the matching error embed.
"""

import discord
from discord import app_commands
from discord.ext import commands
from typing import List, Optional

from ladder_bot.constants import PaginationConstants, UIConstants
from ladder_bot.utils.embeds import (
    build_challenge_embed, build_challenge_list_embed, build_match_outcome_embed, build_rankings_embed
)
from ladder_bot.utils.error_embeds import ErrorEmbeds
from ladder_bot.utils.interaction_helpers import (
    actor_for, category_choices, resolve_category, resolve_team, team_choices, team_in_category
)
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class LadderCog(commands.Cog):
    """Player commands for the ladder"""

    def __init__(self, bot):
        self.bot = bot
        self.db = bot.db
        self.ranking_ops = bot.ranking_ops
        self.challenge_ops = bot.challenge_ops
        self.join_request_ops = bot.join_request_ops
        self.logger = logger

    @app_commands.command(name="rankings", description="Show the rankings of a ladder category")
    @app_commands.describe(category="Ladder category", page="Page number")
    async def rankings(self, interaction: discord.Interaction, category: str, page: Optional[int] = 1):
        await interaction.response.defer()

        ladder_category = await resolve_category(self.db, category)
        rows = await self.ranking_ops.get_standings(ladder_category.id)
        embed = build_rankings_embed(
            ladder_category, rows, page=page or 1, page_size=PaginationConstants.RANKINGS_PAGE_SIZE
        )
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="challenge", description="Challenge a team ranked above yours")
    @app_commands.describe(
        category="Ladder category",
        opponent="Team to challenge",
        message="Optional message for the other team"
    )
    async def challenge(
        self,
        interaction: discord.Interaction,
        category: str,
        opponent: str,
        message: Optional[str] = None
    ):
        await interaction.response.defer()

        ladder_category = await resolve_category(self.db, category)
        own_team = await team_in_category(self.db, interaction.user.id, ladder_category.id)
        if not own_team:
            await interaction.followup.send(embed=ErrorEmbeds.no_team(), ephemeral=True)
            return
        target = await resolve_team(self.db, opponent)

        created = await self.challenge_ops.create_challenge(
            actor_for(interaction.user),
            own_team.id,
            target.id,
            ladder_category.id,
            message=message
        )
        await interaction.followup.send(embed=build_challenge_embed(created, "Challenge Sent"))

    @app_commands.command(name="accept", description="Accept a challenge against your team")
    @app_commands.describe(challenge_id="ID of the challenge")
    async def accept(self, interaction: discord.Interaction, challenge_id: int):
        await interaction.response.defer()
        accepted = await self.challenge_ops.accept_challenge(actor_for(interaction.user), challenge_id)
        await interaction.followup.send(
            embed=build_challenge_embed(accepted, "Challenge Accepted", UIConstants.SUCCESS_COLOR)
        )

    @app_commands.command(name="decline", description="Decline a challenge against your team")
    @app_commands.describe(challenge_id="ID of the challenge", reason="Optional reason")
    async def decline(self, interaction: discord.Interaction, challenge_id: int, reason: Optional[str] = None):
        await interaction.response.defer()
        declined = await self.challenge_ops.decline_challenge(actor_for(interaction.user), challenge_id, reason=reason)
        await interaction.followup.send(
            embed=build_challenge_embed(declined, "Challenge Declined", UIConstants.ERROR_COLOR)
        )

    @app_commands.command(name="cancel-challenge", description="Withdraw a challenge your team sent")
    @app_commands.describe(challenge_id="ID of the challenge")
    async def cancel_challenge(self, interaction: discord.Interaction, challenge_id: int):
        await interaction.response.defer(ephemeral=True)
        cancelled = await self.challenge_ops.cancel_challenge(actor_for(interaction.user), challenge_id)
        await interaction.followup.send(embed=build_challenge_embed(cancelled, "Challenge Cancelled"), ephemeral=True)

    @app_commands.command(name="report-result", description="Report the result of an accepted challenge")
    @app_commands.describe(
        challenge_id="ID of the accepted challenge",
        winner="Winning team",
        winner_score="Score of the winning team",
        loser_score="Score of the losing team"
    )
    async def report_result(
        self,
        interaction: discord.Interaction,
        challenge_id: int,
        winner: str,
        winner_score: app_commands.Range[int, 0],
        loser_score: app_commands.Range[int, 0]
    ):
        await interaction.response.defer()

        winner_team = await resolve_team(self.db, winner)
        outcome = await self.challenge_ops.report_match_result(
            actor_for(interaction.user),
            challenge_id,
            winner_team.id,
            winner_score,
            loser_score
        )

        loser_team = await self.db.get_team(outcome.loser_team_id)
        names = {winner_team.id: winner_team.name, loser_team.id: loser_team.name}
        await interaction.followup.send(
            embed=build_match_outcome_embed(outcome, names, f"{winner_score}-{loser_score}")
        )

    @app_commands.command(name="join-ladder", description="Ask for your team to be added to a category")
    @app_commands.describe(category="Ladder category", team="Your team", message="Optional note for the admins")
    async def join_ladder(
        self,
        interaction: discord.Interaction,
        category: str,
        team: str,
        message: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)

        ladder_category = await resolve_category(self.db, category)
        own_team = await resolve_team(self.db, team)
        request = await self.join_request_ops.submit_request(
            actor_for(interaction.user), own_team.id, ladder_category.id, message=message
        )

        embed = discord.Embed(
            title="📝 Join Request Submitted",
            description=(
                f"**{own_team.name}** asked to join **{ladder_category.name}**.\n"
                f"An admin will review request `#{request.id}`."
            ),
            color=UIConstants.SUCCESS_COLOR
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="my-challenges", description="List pending challenges of your teams")
    async def my_challenges(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)

        teams = await self.db.get_teams_for_member(interaction.user.id)
        if not teams:
            await interaction.followup.send(embed=ErrorEmbeds.no_team(), ephemeral=True)
            return

        team_ids = [t.id for t in teams]
        challenges = await self.challenge_ops.get_team_challenges(team_ids)
        await interaction.followup.send(embed=build_challenge_list_embed(challenges, team_ids), ephemeral=True)

    # Autocomplete

    @rankings.autocomplete('category')
    @challenge.autocomplete('category')
    @join_ladder.autocomplete('category')
    async def category_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return await category_choices(self.db, current)

    @challenge.autocomplete('opponent')
    @report_result.autocomplete('winner')
    @join_ladder.autocomplete('team')
    async def team_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return await team_choices(self.db, current)


async def setup(bot):
    await bot.add_cog(LadderCog(bot))
