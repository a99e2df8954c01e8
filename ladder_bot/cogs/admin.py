import discord
from discord import app_commands
from discord.ext import commands
from typing import List, Literal, Optional

from ladder_bot.constants import PaginationConstants, UIConstants
from ladder_bot.database.models import AuditAction
from ladder_bot.utils.embeds import build_audit_log_embed
from ladder_bot.utils.error_embeds import ErrorEmbeds
from ladder_bot.utils.interaction_helpers import (
    actor_for, admin_only, category_choices, resolve_category, resolve_team, team_choices
)
from ladder_bot.utils.logger import setup_logger
from ladder_bot.utils.time_parser import FREEZE_PRESETS, format_remaining, freeze_until_from_preset

logger = setup_logger(__name__)

class AdminCog(commands.Cog):
    """Admin-only commands for managing the ladder"""

    def __init__(self, bot):
        self.bot = bot
        self.db = bot.db
        self.ranking_ops = bot.ranking_ops
        self.freeze_ops = bot.freeze_ops
        self.join_request_ops = bot.join_request_ops
        self.team_ops = bot.team_ops
        self.audit_ops = bot.audit_ops
        self.logger = logger

    def _done(self, title: str, description: str) -> discord.Embed:
        return discord.Embed(title=f"✅ {title}", description=description, color=UIConstants.SUCCESS_COLOR)

    @app_commands.command(name="admin-swap", description="Swap the ranks of two teams (Admin only)")
    @app_commands.describe(category="Ladder category", team_a="First team", team_b="Second team", notes="Audit notes")
    @admin_only()
    async def admin_swap(
        self,
        interaction: discord.Interaction,
        category: str,
        team_a: str,
        team_b: str,
        notes: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        ladder_category = await resolve_category(self.db, category)
        first = await resolve_team(self.db, team_a)
        second = await resolve_team(self.db, team_b)

        await self.ranking_ops.swap_ranks(
            ladder_category.id, first.id, second.id, actor=actor_for(interaction.user), notes=notes
        )
        await interaction.followup.send(
            embed=self._done("Ranks Swapped", f"**{first.name}** and **{second.name}** swapped ranks in **{ladder_category.name}**."),
            ephemeral=True
        )

    @app_commands.command(name="admin-move", description="Move a team one rank up or down (Admin only)")
    @app_commands.describe(category="Ladder category", team="Team to move", direction="up or down", notes="Audit notes")
    @admin_only()
    async def admin_move(
        self,
        interaction: discord.Interaction,
        category: str,
        team: str,
        direction: Literal['up', 'down'],
        notes: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        ladder_category = await resolve_category(self.db, category)
        target = await resolve_team(self.db, team)

        ranking = await self.ranking_ops.move_rank(
            actor_for(interaction.user), ladder_category.id, target.id, direction, notes=notes
        )
        await interaction.followup.send(
            embed=self._done("Rank Moved", f"**{target.name}** is now rank **#{ranking.rank}** in **{ladder_category.name}**."),
            ephemeral=True
        )

    @app_commands.command(name="admin-remove", description="Remove a team from a category (Admin only)")
    @app_commands.describe(category="Ladder category", team="Team to remove", notes="Audit notes")
    @admin_only()
    async def admin_remove(
        self,
        interaction: discord.Interaction,
        category: str,
        team: str,
        notes: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        ladder_category = await resolve_category(self.db, category)
        target = await resolve_team(self.db, team)

        await self.ranking_ops.remove_from_category(
            ladder_category.id, target.id, actor=actor_for(interaction.user), notes=notes
        )
        await interaction.followup.send(
            embed=self._done("Team Removed", f"**{target.name}** was removed from **{ladder_category.name}**."),
            ephemeral=True
        )

    @app_commands.command(name="admin-seed", description="Add a team at the bottom of a category (Admin only)")
    @app_commands.describe(category="Ladder category", team="Team to add", notes="Audit notes")
    @admin_only()
    async def admin_seed(
        self,
        interaction: discord.Interaction,
        category: str,
        team: str,
        notes: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        ladder_category = await resolve_category(self.db, category)
        target = await resolve_team(self.db, team)

        ranking = await self.ranking_ops.seed_ranking(
            actor_for(interaction.user), ladder_category.id, target.id, notes=notes
        )
        await interaction.followup.send(
            embed=self._done("Team Seeded", f"**{target.name}** entered **{ladder_category.name}** at rank **#{ranking.rank}**."),
            ephemeral=True
        )

    @app_commands.command(name="admin-verify-ranks", description="Check a category's ranks for gaps or duplicates (Admin only)")
    @app_commands.describe(category="Ladder category")
    @admin_only()
    async def admin_verify_ranks(self, interaction: discord.Interaction, category: str):
        await interaction.response.defer(ephemeral=True)
        ladder_category = await resolve_category(self.db, category)
        report = await self.ranking_ops.verify_rank_permutation(ladder_category.id)

        if report.is_valid:
            embed = self._done("Ranks Consistent", f"**{ladder_category.name}**: {report.count} teams ranked 1..{report.count}.")
        else:
            embed = discord.Embed(
                title="⚠️ Rank Inconsistency",
                description=(
                    f"**{ladder_category.name}** ({report.count} teams)\n"
                    f"Duplicates: {report.duplicates or 'none'}\n"
                    f"Missing: {report.missing or 'none'}\n"
                    f"Out of range: {report.out_of_range or 'none'}"
                ),
                color=UIConstants.WARNING_COLOR
            )
            self.logger.warning(f"Rank check failed for category {ladder_category.id}: {report}")
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="admin-edit-stats", description="Correct a team's stats (Admin only)")
    @app_commands.describe(
        category="Ladder category",
        team="Team to edit",
        points="New points",
        wins="New wins",
        losses="New losses",
        streak="New streak (negative for a losing streak)",
        notes="Audit notes"
    )
    @admin_only()
    async def admin_edit_stats(
        self,
        interaction: discord.Interaction,
        category: str,
        team: str,
        points: Optional[int] = None,
        wins: Optional[int] = None,
        losses: Optional[int] = None,
        streak: Optional[int] = None,
        notes: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        if all(value is None for value in (points, wins, losses, streak)):
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input("Provide at least one stat to change."), ephemeral=True)
            return

        ladder_category = await resolve_category(self.db, category)
        target = await resolve_team(self.db, team)
        ranking = await self.ranking_ops.edit_stats(
            actor_for(interaction.user), ladder_category.id, target.id,
            points=points, wins=wins, losses=losses, streak=streak, notes=notes
        )
        await interaction.followup.send(
            embed=self._done(
                "Stats Updated",
                f"**{target.name}**: {ranking.points} pts, {ranking.wins}W-{ranking.losses}L, streak {ranking.streak}"
            ),
            ephemeral=True
        )

    @app_commands.command(name="admin-freeze", description="Freeze a team so it cannot be challenged (Admin only)")
    @app_commands.describe(team="Team to freeze", duration="1d, 3d, 1w, 2w or a date (YYYY-MM-DD)", reason="Reason")
    @admin_only()
    async def admin_freeze(
        self,
        interaction: discord.Interaction,
        team: str,
        duration: str,
        reason: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        try:
            until = freeze_until_from_preset(duration)
        except ValueError as e:
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input(str(e)), ephemeral=True)
            return

        target = await resolve_team(self.db, team)
        frozen = await self.freeze_ops.freeze(actor_for(interaction.user), target.id, until, reason=reason)
        await interaction.followup.send(
            embed=self._done(
                "Team Frozen",
                f"{UIConstants.FROZEN_EMOJI} **{frozen.name}** is frozen for {format_remaining(until)} "
                f"(until {until:%Y-%m-%d %H:%M} UTC)."
            ),
            ephemeral=True
        )

    @app_commands.command(name="admin-unfreeze", description="Unfreeze a team (Admin only)")
    @app_commands.describe(team="Team to unfreeze", notes="Audit notes")
    @admin_only()
    async def admin_unfreeze(self, interaction: discord.Interaction, team: str, notes: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        target = await resolve_team(self.db, team)
        await self.freeze_ops.unfreeze(actor_for(interaction.user), target.id, notes=notes)
        await interaction.followup.send(embed=self._done("Team Unfrozen", f"**{target.name}** can be challenged again."), ephemeral=True)

    @app_commands.command(name="admin-frozen-teams", description="List teams that are currently frozen (Admin only)")
    @admin_only()
    async def admin_frozen_teams(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        teams = await self.freeze_ops.get_frozen_teams()

        embed = discord.Embed(title=f"{UIConstants.FROZEN_EMOJI} Frozen Teams", color=UIConstants.DEFAULT_EMBED_COLOR)
        if not teams:
            embed.description = "No team is frozen."
        else:
            embed.description = "\n".join(
                f"**{t.name}**: {format_remaining(t.frozen_until)} left" + (f" ({t.frozen_reason})" if t.frozen_reason else "")
                for t in teams[:25]
            )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="admin-approve", description="Approve a join request (Admin only)")
    @app_commands.describe(request_id="ID of the join request", notes="Admin notes")
    @admin_only()
    async def admin_approve(self, interaction: discord.Interaction, request_id: int, notes: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        ranking = await self.join_request_ops.approve(actor_for(interaction.user), request_id, notes=notes)
        team = await self.db.get_team(ranking.team_id)
        await interaction.followup.send(
            embed=self._done("Join Request Approved", f"**{team.name}** entered the ladder at rank **#{ranking.rank}**."),
            ephemeral=True
        )

    @app_commands.command(name="admin-reject", description="Reject a join request (Admin only)")
    @app_commands.describe(request_id="ID of the join request", notes="Admin notes")
    @admin_only()
    async def admin_reject(self, interaction: discord.Interaction, request_id: int, notes: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        await self.join_request_ops.reject(actor_for(interaction.user), request_id, notes=notes)
        await interaction.followup.send(embed=self._done("Join Request Rejected", f"Request `#{request_id}` was rejected."), ephemeral=True)

    @app_commands.command(name="admin-join-requests", description="List pending join requests (Admin only)")
    @app_commands.describe(category="Only show requests for this category")
    @admin_only()
    async def admin_join_requests(self, interaction: discord.Interaction, category: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        category_id = (await resolve_category(self.db, category)).id if category else None
        requests = await self.join_request_ops.get_pending_requests(category_id)

        embed = discord.Embed(title="📝 Pending Join Requests", color=UIConstants.DEFAULT_EMBED_COLOR)
        if not requests:
            embed.description = "No pending join requests."
        else:
            embed.description = "\n".join(
                f"`#{r.id}` **{r.team.name}** → {r.category.name}" + (f"\n> {r.message[:100]}" if r.message else "")
                for r in requests[:20]
            )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="admin-audit-log", description="Show recent ladder admin actions (Admin only)")
    @app_commands.describe(category="Filter by category", team="Filter by team", action="Filter by action")
    @admin_only()
    async def admin_audit_log(
        self,
        interaction: discord.Interaction,
        category: Optional[str] = None,
        team: Optional[str] = None,
        action: Optional[str] = None
    ):
        await interaction.response.defer(ephemeral=True)
        category_id = (await resolve_category(self.db, category)).id if category else None
        team_id = (await resolve_team(self.db, team)).id if team else None
        try:
            audit_action = AuditAction(action) if action else None
        except ValueError:
            await interaction.followup.send(embed=ErrorEmbeds.invalid_input(f"Unknown action: {action}"), ephemeral=True)
            return

        entries = await self.audit_ops.get_audit_log(
            category_id=category_id, team_id=team_id, action=audit_action,
            limit=PaginationConstants.AUDIT_LOG_LIMIT
        )
        await interaction.followup.send(embed=build_audit_log_embed(entries), ephemeral=True)

    @app_commands.command(name="admin-delete-team", description="Delete a team and its ladder history (Admin only)")
    @app_commands.describe(team="Team to delete", notes="Audit notes")
    @admin_only()
    async def admin_delete_team(self, interaction: discord.Interaction, team: str, notes: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        target = await resolve_team(self.db, team)
        categories = await self.team_ops.delete_team(actor_for(interaction.user), target.id, notes=notes)
        await interaction.followup.send(
            embed=self._done("Team Deleted", f"**{target.name}** was deleted; {len(categories)} category ranking(s) re-ordered."),
            ephemeral=True
        )

    # Autocomplete

    @admin_swap.autocomplete('category')
    @admin_move.autocomplete('category')
    @admin_remove.autocomplete('category')
    @admin_seed.autocomplete('category')
    @admin_verify_ranks.autocomplete('category')
    @admin_edit_stats.autocomplete('category')
    @admin_join_requests.autocomplete('category')
    @admin_audit_log.autocomplete('category')
    async def category_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return await category_choices(self.db, current)

    @admin_swap.autocomplete('team_a')
    @admin_swap.autocomplete('team_b')
    @admin_move.autocomplete('team')
    @admin_remove.autocomplete('team')
    @admin_seed.autocomplete('team')
    @admin_edit_stats.autocomplete('team')
    @admin_freeze.autocomplete('team')
    @admin_unfreeze.autocomplete('team')
    @admin_audit_log.autocomplete('team')
    @admin_delete_team.autocomplete('team')
    async def team_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return await team_choices(self.db, current)

    @admin_freeze.autocomplete('duration')
    async def duration_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return [app_commands.Choice(name=preset, value=preset) for preset in FREEZE_PRESETS if preset.startswith(current.lower())]

    @admin_audit_log.autocomplete('action')
    async def action_autocomplete(self, interaction: discord.Interaction, current: str) -> List[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=a.value, value=a.value)
            for a in AuditAction if current.lower() in a.value
        ][:25]


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
