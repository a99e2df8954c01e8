"""
Shared embed utilities for the ladder Discord bot.

Provides reusable embed building functions to maintain consistency
across the ladder and admin cogs.
"""

import discord
from typing import Dict, List, Optional

from ladder_bot.constants import UIConstants
from ladder_bot.data_models.ladder import MatchOutcome, RankingRow
from ladder_bot.database.models import AuditEntry, Challenge, LadderCategory


def _streak_label(streak: int) -> str:
    if streak > 0:
        return f"{UIConstants.STREAK_UP_EMOJI}{streak}"
    if streak < 0:
        return f"{UIConstants.STREAK_DOWN_EMOJI}{abs(streak)}"
    return "-"


def build_rankings_embed(
    category: LadderCategory,
    rows: List[RankingRow],
    page: int = 1,
    page_size: int = 20
) -> discord.Embed:
    """
    Build the standings table of a category.

    Args:
        category: Category being displayed
        rows: All standings rows in rank order
        page: 1-based page number
        page_size: Rows per page

    Returns:
        Formatted Discord embed with the rankings table
    """
    total_pages = max(1, (len(rows) + page_size - 1) // page_size)
    page = min(max(page, 1), total_pages)

    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} {category.name} Rankings",
        description=f"Challenge range: **{category.challenge_range}** positions",
        color=UIConstants.GOLD_RANK_COLOR
    )

    if not rows:
        embed.description += "\n\nNo teams are ranked in this category yet."
        return embed

    # Table format
    lines = ["```"]
    lines.append(f"{'Rank':<5} {'Team':<22} {'Pts':<6} {'W-L':<7} {'Strk':<5}")
    lines.append("-" * 50)

    start = (page - 1) * page_size
    for row in rows[start:start + page_size]:
        team_name = row.team_name[:20]  # Truncate long names
        frozen = UIConstants.FROZEN_EMOJI if row.is_frozen else "  "
        record = f"{row.wins}-{row.losses}"
        lines.append(
            f"{row.rank:<5} {team_name:<22} {row.points:<6} {record:<7} {_streak_label(row.streak):<5}{frozen}"
        )

    lines.append("```")
    embed.description += "\n" + "\n".join(lines)

    frozen_rows = [row for row in rows if row.is_frozen]
    if frozen_rows:
        embed.add_field(
            name=f"{UIConstants.FROZEN_EMOJI} Frozen",
            value="\n".join(f"{row.team_name} ({row.frozen_until_label} left)" for row in frozen_rows[:10]),
            inline=False
        )

    embed.set_footer(text=f"Page {page}/{total_pages} | Teams: {len(rows)}")
    return embed


def build_challenge_embed(challenge: Challenge, title: str, color: Optional[int] = None) -> discord.Embed:
    """Build a summary embed for a single challenge."""
    embed = discord.Embed(
        title=f"{UIConstants.SWORDS_EMOJI} {title}",
        color=color or UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(name="Challenger", value=challenge.challenger_team.name, inline=True)
    embed.add_field(name="Challenged", value=challenge.challenged_team.name, inline=True)
    embed.add_field(name="Category", value=challenge.category.name, inline=True)
    embed.add_field(name="Status", value=challenge.status.value.title(), inline=True)
    embed.add_field(name="Expires", value=challenge.expires_at.strftime('%Y-%m-%d %H:%M UTC'), inline=True)

    if challenge.message:
        embed.add_field(name="Message", value=challenge.message[:1024], inline=False)
    if challenge.decline_reason:
        embed.add_field(name="Decline Reason", value=challenge.decline_reason[:1024], inline=False)

    embed.set_footer(text=f"Challenge ID: {challenge.id}")
    return embed


def build_challenge_list_embed(challenges: List[Challenge], team_ids: List[int]) -> discord.Embed:
    """Build the /my-challenges overview, split by direction."""
    embed = discord.Embed(
        title=f"{UIConstants.SWORDS_EMOJI} Your Pending Challenges",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )

    incoming = [c for c in challenges if c.challenged_team_id in team_ids]
    outgoing = [c for c in challenges if c.challenger_team_id in team_ids]

    def _lines(items: List[Challenge], incoming_side: bool) -> str:
        if not items:
            return "None"
        lines = []
        for c in items[:10]:
            opponent = c.challenger_team.name if incoming_side else c.challenged_team.name
            lines.append(f"`#{c.id}` vs **{opponent}** in {c.category.name} (expires {c.expires_at:%Y-%m-%d})")
        return "\n".join(lines)

    embed.add_field(name="📥 Incoming", value=_lines(incoming, True), inline=False)
    embed.add_field(name="📤 Outgoing", value=_lines(outgoing, False), inline=False)
    return embed


def build_match_outcome_embed(outcome: MatchOutcome, team_names: Dict[int, str], score: str) -> discord.Embed:
    """Build the result embed shown after /report-result."""
    winner = team_names.get(outcome.winner_team_id, f"Team {outcome.winner_team_id}")
    loser = team_names.get(outcome.loser_team_id, f"Team {outcome.loser_team_id}")

    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Match Result",
        description=f"**{winner}** defeated **{loser}** ({score})",
        color=UIConstants.SUCCESS_COLOR
    )
    if outcome.ranks_swapped:
        embed.add_field(
            name="Rank Change",
            value=(
                f"{winner}: #{outcome.winner_rank_before} → #{outcome.winner_rank_after}\n"
                f"{loser}: #{outcome.loser_rank_before} → #{outcome.loser_rank_after}"
            ),
            inline=False
        )
    else:
        embed.add_field(name="Rank Change", value=f"{winner} defended rank #{outcome.winner_rank_after}", inline=False)
    return embed


def build_audit_log_embed(entries: List[AuditEntry]) -> discord.Embed:
    """Build the admin audit log listing, newest first."""
    embed = discord.Embed(title="📜 Ladder Audit Log", color=UIConstants.DEFAULT_EMBED_COLOR)

    if not entries:
        embed.description = "No audit entries found."
        return embed

    lines = []
    for entry in entries:
        when = entry.created_at.strftime('%Y-%m-%d %H:%M') if entry.created_at else "?"
        target = f"team {entry.team_id}" if entry.team_id is not None else "-"
        line = f"`{when}` **{entry.action.value}** by <@{entry.admin_user_id}> on {target}"
        if entry.notes:
            line += f"\n> {entry.notes[:100]}"
        lines.append(line)

    embed.description = "\n".join(lines)[:4096]
    return embed
