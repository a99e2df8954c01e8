"""
Helpers shared by the ladder cogs: caller identity, admin checks and
resolution of the category / team arguments coming from autocomplete.
"""

from typing import List, Optional

import discord
from discord import app_commands

from ladder_bot.config import Config
from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.models import LadderCategory, Team
from ladder_bot.utils.ladder_exceptions import NotFoundError
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


def is_ladder_admin(user_id: int) -> bool:
    return user_id in Config.get_admin_ids()


def actor_for(user: discord.abc.User) -> Actor:
    """Explicit identity for the operations layer"""
    return Actor(user_id=user.id, is_admin=is_ladder_admin(user.id))


def admin_only():
    """app_commands check restricting a command to ladder admins"""
    return app_commands.check(lambda interaction: is_ladder_admin(interaction.user.id))


async def resolve_category(db, value: str) -> LadderCategory:
    """Autocomplete sends the category id; typed input falls back to a name lookup"""
    value = (value or "").strip()
    category = None
    if value.isdigit():
        category = await db.get_category(int(value))
    if category is None:
        category = await db.get_category_by_name(value)
    if category is None:
        raise NotFoundError("Category", value)
    return category


async def resolve_team(db, value: str) -> Team:
    value = (value or "").strip()
    team = None
    if value.isdigit():
        team = await db.get_team(int(value))
    if team is None:
        team = await db.get_team_by_name(value)
    if team is None:
        raise NotFoundError("Team", value)
    return team


async def team_in_category(db, discord_id: int, category_id: int) -> Optional[Team]:
    """The caller's team that is ranked in the category, if any"""
    for team in await db.get_teams_for_member(discord_id):
        if await db.get_team_ranking(team.id, category_id):
            return team
    return None


async def category_choices(db, current: str) -> List[app_commands.Choice[str]]:
    try:
        categories = await db.search_categories(current)
        return [app_commands.Choice(name=c.name, value=str(c.id)) for c in categories]
    except Exception as e:
        logger.error(f"Category autocomplete error: {e}")
        return []


async def team_choices(db, current: str) -> List[app_commands.Choice[str]]:
    try:
        teams = await db.search_teams(current)
        return [app_commands.Choice(name=t.name, value=str(t.id)) for t in teams]
    except Exception as e:
        logger.error(f"Team autocomplete error: {e}")
        return []
