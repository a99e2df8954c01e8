"""
Rank conflict tests

Two Database objects on one SQLite file stand in for two bot processes
sharing a ladder: the in-process category locks do not cover the other
one, so stale rank writes must be refused and retried on fresh state.
Also covers the conflict translation and bounded retry of the locked
transaction runner.
"""

import asyncio
import sqlite3

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import RecordingNotifier, RecordingPublisher, ranks_by_team
from ladder_bot.config import Config
from ladder_bot.database.database import Database
from ladder_bot.database.models import Ranking
from ladder_bot.operations.ranking_operations import RankingOperations
from ladder_bot.utils.ladder_exceptions import ConstraintConflictError


@pytest_asyncio.fixture
async def other_db(db):
    """Second engine on the same database file"""
    database = Database(db.database_url)
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def other_ranking_ops(other_db):
    return RankingOperations(other_db, publisher=RecordingPublisher(), notifier=RecordingNotifier())


async def _load_category(session, category_id):
    result = await session.execute(select(Ranking).where(Ranking.category_id == category_id))
    return list(result.scalars().all())


class TestWritersInOtherProcesses:

    async def test_swap_on_stale_ranks_is_refused(self, db, ranking_ops, other_ranking_ops, category, ranked_teams):
        t0, t1, t2, t3 = await ranked_teams(category.id, 4)

        with pytest.raises(ConstraintConflictError):
            async with db.transaction() as s:
                await _load_category(s, category.id)
                await other_ranking_ops.remove_from_category(category.id, t1.id)
                await ranking_ops.swap_ranks(category.id, t0.id, t3.id, session=s)

        report = await ranking_ops.verify_rank_permutation(category.id)
        assert report.is_valid
        assert await ranks_by_team(ranking_ops, category.id) == {t0.id: 1, t2.id: 2, t3.id: 3}

    async def test_remove_on_stale_rank_is_refused(self, db, ranking_ops, other_ranking_ops, category, ranked_teams):
        t0, t1, t2, t3 = await ranked_teams(category.id, 4)

        with pytest.raises(ConstraintConflictError):
            async with db.transaction() as s:
                await _load_category(s, category.id)
                await other_ranking_ops.swap_ranks(category.id, t1.id, t3.id)
                await ranking_ops.remove_from_category(category.id, t1.id, session=s)

        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid
        assert await ranks_by_team(ranking_ops, category.id) == {t0.id: 1, t3.id: 2, t2.id: 3, t1.id: 4}

    async def test_locked_runner_retries_stale_swap_on_fresh_state(self, ranking_ops, other_ranking_ops, category, ranked_teams):
        t0, t1, t2, t3 = await ranked_teams(category.id, 4)
        calls = []

        async def _stale_then_fresh(s):
            calls.append(len(calls) + 1)
            await _load_category(s, category.id)
            if len(calls) == 1:
                await other_ranking_ops.remove_from_category(category.id, t1.id)
            await ranking_ops.swap_ranks(category.id, t0.id, t3.id, session=s)

        await ranking_ops._run_locked([category.id], "swap_ranks", _stale_then_fresh)

        assert calls == [1, 2]
        assert await ranks_by_team(ranking_ops, category.id) == {t3.id: 1, t2.id: 2, t0.id: 3}

    async def test_racing_swap_and_remove_keep_ranks_dense(self, ranking_ops, other_ranking_ops, category, ranked_teams):
        t0, t1, t2, t3 = await ranked_teams(category.id, 4)

        results = await asyncio.gather(
            ranking_ops.swap_ranks(category.id, t0.id, t3.id),
            other_ranking_ops.remove_from_category(category.id, t1.id),
            return_exceptions=True
        )

        for result in results:
            assert result is None or isinstance(result, ConstraintConflictError)
        report = await ranking_ops.verify_rank_permutation(category.id)
        assert report.is_valid
        assert report.count == 3
        assert set(await ranks_by_team(ranking_ops, category.id)) == {t0.id, t2.id, t3.id}


class TestConflictRetry:

    async def test_integrity_error_is_retried_once(self, ranking_ops, category, ranked_teams):
        first, second = await ranked_teams(category.id, 2)
        calls = []

        async def _collide_then_succeed(s):
            calls.append(len(calls) + 1)
            if len(calls) == 1:
                ranking = (await s.execute(
                    select(Ranking).where(Ranking.team_id == second.id)
                )).scalar_one()
                ranking.rank = 1
                await s.flush()
            return "done"

        assert await ranking_ops._run_locked([category.id], "edit_rank", _collide_then_succeed) == "done"
        assert calls == [1, 2]
        assert await ranks_by_team(ranking_ops, category.id) == {first.id: 1, second.id: 2}

    async def test_conflict_surfaces_without_retries(self, ranking_ops, category):
        calls = []

        async def _conflict(s):
            calls.append(1)
            raise ConstraintConflictError("edit_rank", "rank taken")

        with pytest.raises(ConstraintConflictError) as exc_info:
            await ranking_ops._run_locked([category.id], "edit_rank", _conflict, max_retries=0)

        assert len(calls) == 1
        assert exc_info.value.operation == "edit_rank"

    async def test_persistent_conflict_gives_up_after_configured_retries(self, ranking_ops, category):
        calls = []

        async def _conflict(s):
            calls.append(1)
            raise ConstraintConflictError("edit_rank", "rank taken")

        with pytest.raises(ConstraintConflictError):
            await ranking_ops._run_locked([category.id], "edit_rank", _conflict)

        assert len(calls) == Config.CONFLICT_RETRIES + 1

    async def test_integrity_error_surfaces_as_conflict(self, ranking_ops, category, ranked_teams):
        _, second = await ranked_teams(category.id, 2)

        async def _collide(s):
            ranking = (await s.execute(
                select(Ranking).where(Ranking.team_id == second.id)
            )).scalar_one()
            ranking.rank = 1
            await s.flush()

        with pytest.raises(ConstraintConflictError) as exc_info:
            await ranking_ops._run_locked([category.id], "edit_rank", _collide, max_retries=0)

        assert exc_info.value.operation == "edit_rank"
        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid

    async def test_sqlite_lock_contention_is_retried(self, ranking_ops, category):
        calls = []

        async def _locked_then_free(s):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE ladder_rankings", {}, sqlite3.OperationalError("database is locked"))
            return "done"

        assert await ranking_ops._run_locked([category.id], "swap_ranks", _locked_then_free) == "done"
        assert len(calls) == 2

    async def test_other_operational_errors_propagate(self, ranking_ops, category):
        calls = []

        async def _broken(s):
            calls.append(1)
            raise OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: ladder_rankings"))

        with pytest.raises(OperationalError):
            await ranking_ops._run_locked([category.id], "swap_ranks", _broken)

        assert len(calls) == 1
