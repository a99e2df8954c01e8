import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Ladder bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    ADMIN_DISCORD_IDS = os.getenv('ADMIN_DISCORD_IDS', '')  # Comma-separated ladder admins

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///ladder.db')

    # Realtime push (ranking change events)
    REDIS_URL = os.getenv('REDIS_URL')
    RANKING_EVENT_CHANNEL_PREFIX = 'ladder:category:'

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Ladder settings
    STARTING_POINTS = 1000
    WIN_POINTS = 25
    LOSS_POINTS = 10
    DEFAULT_CHALLENGE_RANGE = 5
    CHALLENGE_EXPIRY_DAYS = 7
    MIN_ROSTER_SIZE = 2

    # Concurrency settings
    CONFLICT_RETRIES = 1       # Internal retries for ConstraintConflictError
    EXPIRY_SWEEP_MINUTES = 30  # Background sweep interval for overdue challenges

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def get_admin_ids(cls):
        """Get the set of Discord IDs treated as ladder admins (owner included)"""
        admin_ids = set()
        if cls.ADMIN_DISCORD_IDS:
            try:
                admin_ids = {int(admin_id.strip()) for admin_id in cls.ADMIN_DISCORD_IDS.split(',') if admin_id.strip()}
            except ValueError:
                raise ValueError("ADMIN_DISCORD_IDS must be comma-separated integers")
        if cls.OWNER_DISCORD_ID:
            admin_ids.add(cls.OWNER_DISCORD_ID)
        return admin_ids

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.DISCORD_GUILD_ID and not cls.DISCORD_GUILD_IDS:
            raise ValueError("Either DISCORD_GUILD_ID or DISCORD_GUILD_IDS is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
