"""
Shared fixtures for the ladder engine tests.

Every test gets its own SQLite database file, a recording notification
dispatcher and a recording ranking event publisher in place of Discord and
Redis.
"""

import itertools

import pytest
import pytest_asyncio

from ladder_bot.data_models.ladder import Actor
from ladder_bot.database.database import Database
from ladder_bot.operations.audit_operations import AuditOperations
from ladder_bot.operations.challenge_operations import ChallengeOperations
from ladder_bot.operations.freeze_operations import FreezeOperations
from ladder_bot.operations.join_request_operations import JoinRequestOperations
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.operations.team_operations import TeamOperations
from ladder_bot.services.notifications import NotificationDispatcher


ADMIN = Actor(user_id=1, is_admin=True)
STRANGER = Actor(user_id=2, is_admin=False)


def member_of(team) -> Actor:
    """Actor for the captain of a team built by team_factory"""
    return Actor(user_id=team.created_by, is_admin=False)


class RecordingNotifier(NotificationDispatcher):
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def dispatch(self, kind, payload):
        if self.fail:
            raise RuntimeError("dispatcher unavailable")
        self.sent.append((kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.sent]


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, category_id, event_type, data=None):
        self.events.append((category_id, event_type, data or {}))
        return True

    async def close(self):
        pass


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ladder_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def ranking_ops(db, publisher, notifier):
    return RankingOperations(db, publisher=publisher, notifier=notifier)


@pytest.fixture
def challenge_ops(db, ranking_ops, publisher, notifier):
    return ChallengeOperations(db, ranking_ops=ranking_ops, publisher=publisher, notifier=notifier)


@pytest.fixture
def freeze_ops(db, publisher, notifier):
    return FreezeOperations(db, publisher=publisher, notifier=notifier)


@pytest.fixture
def join_request_ops(db, ranking_ops, publisher, notifier):
    return JoinRequestOperations(db, ranking_ops=ranking_ops, publisher=publisher, notifier=notifier)


@pytest.fixture
def team_ops(db, ranking_ops, publisher, notifier):
    return TeamOperations(db, ranking_ops=ranking_ops, publisher=publisher, notifier=notifier)


@pytest.fixture
def audit_ops(db):
    return AuditOperations(db)


@pytest_asyncio.fixture
async def ladder(db):
    return await db.create_ladder("Test Ladder", created_by=ADMIN.user_id)


@pytest_asyncio.fixture
async def category(db, ladder):
    return await db.create_category(ladder.id, "Open", challenge_range=5)


@pytest.fixture
def team_factory(db):
    """Creates teams whose members are n*100, n*100+1, ... (captain first)"""
    counter = itertools.count(1)

    async def _create(name=None, members=2):
        n = next(counter)
        return await db.create_team(name or f"Team {n}", [n * 100 + i for i in range(members)])

    return _create


@pytest.fixture
def ranked_teams(team_factory, ranking_ops):
    """Creates `count` teams ranked 1..count in the category, in list order"""
    async def _create(category_id, count, members=2):
        teams = []
        for _ in range(count):
            team = await team_factory(members=members)
            await ranking_ops.insert_at_next_rank(team.id, category_id)
            teams.append(team)
        return teams

    return _create


async def ranks_by_team(ranking_ops, category_id):
    """team_id -> rank for a category"""
    return {r.team_id: r.rank for r in await ranking_ops.get_category_rankings(category_id)}
