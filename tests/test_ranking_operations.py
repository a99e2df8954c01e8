"""
Ranking store tests

Covers insertion at the next rank, swaps, match results, removal with
re-densification and the 1..N rank permutation under concurrent load.
"""

import asyncio
import random
from datetime import timedelta

import pytest

from conftest import ADMIN, STRANGER, ranks_by_team
from ladder_bot.config import Config
from ladder_bot.database.models import AuditAction
from ladder_bot.utils.ladder_exceptions import (
    AlreadyInCategoryError, CategoryMismatchError, LadderException, NotFoundError,
    UnauthorizedError, ValidationError
)
from ladder_bot.utils.time_parser import utc_now


class TestInsertAtNextRank:

    async def test_first_team_gets_rank_one_with_default_stats(self, ranking_ops, category, team_factory):
        team = await team_factory()

        ranking = await ranking_ops.insert_at_next_rank(team.id, category.id)

        assert ranking.rank == 1
        assert ranking.points == Config.STARTING_POINTS
        assert (ranking.wins, ranking.losses, ranking.streak) == (0, 0, 0)

    async def test_ranks_follow_insertion_order(self, ranking_ops, category, ranked_teams):
        teams = await ranked_teams(category.id, 3)

        ranks = await ranks_by_team(ranking_ops, category.id)
        assert [ranks[t.id] for t in teams] == [1, 2, 3]

    async def test_duplicate_insert_fails_without_touching_ranks(self, ranking_ops, category, ranked_teams):
        teams = await ranked_teams(category.id, 3)
        before = await ranks_by_team(ranking_ops, category.id)

        with pytest.raises(AlreadyInCategoryError):
            await ranking_ops.insert_at_next_rank(teams[1].id, category.id)

        assert await ranks_by_team(ranking_ops, category.id) == before

    async def test_unknown_team(self, ranking_ops, category):
        with pytest.raises(NotFoundError):
            await ranking_ops.insert_at_next_rank(9999, category.id)

    async def test_concurrent_inserts_get_distinct_ranks(self, ranking_ops, category, team_factory):
        teams = [await team_factory() for _ in range(10)]

        rankings = await asyncio.gather(*(
            ranking_ops.insert_at_next_rank(t.id, category.id) for t in teams
        ))

        assert sorted(r.rank for r in rankings) == list(range(1, 11))
        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid

    async def test_categories_rank_independently(self, db, ladder, ranking_ops, category, team_factory):
        other = await db.create_category(ladder.id, "Mixed")
        team = await team_factory()

        first = await ranking_ops.insert_at_next_rank(team.id, category.id)
        second = await ranking_ops.insert_at_next_rank(team.id, other.id)

        assert first.rank == second.rank == 1

    async def test_publishes_event(self, ranking_ops, category, team_factory, publisher):
        team = await team_factory()
        await ranking_ops.insert_at_next_rank(team.id, category.id)

        assert publisher.events == [(category.id, "ranking_inserted", {'team_id': team.id, 'rank': 1})]


class TestSwapRanks:

    async def test_swap_exchanges_ranks(self, ranking_ops, category, ranked_teams):
        a, b, c = await ranked_teams(category.id, 3)

        await ranking_ops.swap_ranks(category.id, a.id, c.id)

        ranks = await ranks_by_team(ranking_ops, category.id)
        assert (ranks[a.id], ranks[b.id], ranks[c.id]) == (3, 2, 1)
        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid

    async def test_missing_ranking(self, ranking_ops, category, ranked_teams, team_factory):
        a, = await ranked_teams(category.id, 1)
        unranked = await team_factory()

        with pytest.raises(NotFoundError):
            await ranking_ops.swap_ranks(category.id, a.id, unranked.id)

    async def test_teams_in_different_categories(self, db, ladder, ranking_ops, category, ranked_teams):
        other = await db.create_category(ladder.id, "Mixed")
        a, = await ranked_teams(category.id, 1)
        b, = await ranked_teams(other.id, 1)

        with pytest.raises(CategoryMismatchError):
            await ranking_ops.swap_ranks(category.id, a.id, b.id)

        assert (await ranks_by_team(ranking_ops, category.id)) == {a.id: 1}

    async def test_same_team(self, ranking_ops, category, ranked_teams):
        a, = await ranked_teams(category.id, 1)
        with pytest.raises(ValidationError):
            await ranking_ops.swap_ranks(category.id, a.id, a.id)

    async def test_admin_swap_is_audited(self, ranking_ops, audit_ops, category, ranked_teams):
        a, b = await ranked_teams(category.id, 2)

        await ranking_ops.swap_ranks(category.id, a.id, b.id, actor=ADMIN)

        entries = await audit_ops.get_audit_log(category_id=category.id)
        assert len(entries) == 1
        assert entries[0].action == AuditAction.SWAP_RANKS
        assert entries[0].team_id == a.id
        assert entries[0].old_values['rank'] == 1
        assert entries[0].new_values['rank'] == 2
        assert entries[0].notes == f"Swapped rank with {b.name}"

    async def test_non_admin_actor_cannot_swap(self, ranking_ops, category, ranked_teams):
        a, b = await ranked_teams(category.id, 2)
        with pytest.raises(UnauthorizedError):
            await ranking_ops.swap_ranks(category.id, a.id, b.id, actor=STRANGER)


class TestApplyMatchResult:

    async def test_lower_ranked_winner_takes_the_higher_rank(self, ranking_ops, category, ranked_teams):
        team_b, _, team_a = await ranked_teams(category.id, 3)
        await ranking_ops.edit_stats(ADMIN, category.id, team_a.id, wins=2, losses=1, streak=-1)
        await ranking_ops.edit_stats(ADMIN, category.id, team_b.id, wins=5, losses=0, streak=5)

        outcome = await ranking_ops.apply_match_result(category.id, team_a.id, team_b.id, 6, 4)

        a = await ranking_ops.get_ranking(team_a.id, category.id)
        b = await ranking_ops.get_ranking(team_b.id, category.id)
        assert (a.rank, b.rank) == (1, 3)
        assert (a.wins, a.losses, a.streak) == (3, 1, 1)
        assert (b.wins, b.losses, b.streak) == (5, 1, -1)
        assert a.last_match_at is not None and b.last_match_at is not None
        assert outcome.ranks_swapped
        assert (outcome.winner_rank_before, outcome.winner_rank_after) == (3, 1)
        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid

    async def test_defending_team_keeps_its_rank(self, ranking_ops, category, ranked_teams):
        top, challenger = await ranked_teams(category.id, 2)

        outcome = await ranking_ops.apply_match_result(category.id, top.id, challenger.id, 6, 2)

        assert not outcome.ranks_swapped
        ranks = await ranks_by_team(ranking_ops, category.id)
        assert (ranks[top.id], ranks[challenger.id]) == (1, 2)

    async def test_streaks_extend(self, ranking_ops, category, ranked_teams):
        top, other = await ranked_teams(category.id, 2)

        await ranking_ops.apply_match_result(category.id, top.id, other.id, 6, 2)
        await ranking_ops.apply_match_result(category.id, top.id, other.id, 6, 3)

        assert (await ranking_ops.get_ranking(top.id, category.id)).streak == 2
        assert (await ranking_ops.get_ranking(other.id, category.id)).streak == -2

    async def test_points_move_and_never_go_negative(self, ranking_ops, category, ranked_teams):
        top, other = await ranked_teams(category.id, 2)
        await ranking_ops.edit_stats(ADMIN, category.id, other.id, points=5)

        await ranking_ops.apply_match_result(category.id, top.id, other.id, 6, 0)

        assert (await ranking_ops.get_ranking(top.id, category.id)).points == Config.STARTING_POINTS + Config.WIN_POINTS
        assert (await ranking_ops.get_ranking(other.id, category.id)).points == 0

    async def test_invalid_inputs(self, ranking_ops, category, ranked_teams):
        top, other = await ranked_teams(category.id, 2)

        with pytest.raises(ValidationError):
            await ranking_ops.apply_match_result(category.id, top.id, top.id, 6, 0)
        with pytest.raises(ValidationError):
            await ranking_ops.apply_match_result(category.id, top.id, other.id, -1, 0)


class TestRemoveFromCategory:

    async def test_remaining_ranks_close_the_gap(self, ranking_ops, category, ranked_teams):
        teams = await ranked_teams(category.id, 5)

        await ranking_ops.remove_from_category(category.id, teams[1].id)

        ranks = await ranks_by_team(ranking_ops, category.id)
        assert [ranks[t.id] for t in teams if t.id != teams[1].id] == [1, 2, 3, 4]
        assert (await ranking_ops.verify_rank_permutation(category.id)).is_valid

    async def test_remove_last_and_first(self, ranking_ops, category, ranked_teams):
        teams = await ranked_teams(category.id, 3)

        await ranking_ops.remove_from_category(category.id, teams[2].id)
        await ranking_ops.remove_from_category(category.id, teams[0].id)

        assert await ranks_by_team(ranking_ops, category.id) == {teams[1].id: 1}

    async def test_missing_ranking(self, ranking_ops, category, team_factory):
        team = await team_factory()
        with pytest.raises(NotFoundError):
            await ranking_ops.remove_from_category(category.id, team.id)

    async def test_admin_removal_is_audited(self, ranking_ops, audit_ops, category, ranked_teams):
        teams = await ranked_teams(category.id, 2)

        await ranking_ops.remove_from_category(category.id, teams[0].id, actor=ADMIN, notes="left the club")

        entries = await audit_ops.get_audit_log(team_id=teams[0].id)
        assert entries[0].action == AuditAction.REMOVE_FROM_CATEGORY
        assert entries[0].old_values['rank'] == 1
        assert entries[0].notes == "left the club"


class TestAdminAdjustments:

    async def test_move_up_and_down(self, ranking_ops, category, ranked_teams):
        a, b, c = await ranked_teams(category.id, 3)

        moved = await ranking_ops.move_rank(ADMIN, category.id, c.id, "up")
        assert moved.rank == 2
        assert await ranks_by_team(ranking_ops, category.id) == {a.id: 1, b.id: 3, c.id: 2}

        await ranking_ops.move_rank(ADMIN, category.id, a.id, "down")
        assert await ranks_by_team(ranking_ops, category.id) == {a.id: 2, b.id: 3, c.id: 1}

    async def test_move_past_the_edge(self, ranking_ops, category, ranked_teams):
        a, b = await ranked_teams(category.id, 2)

        with pytest.raises(ValidationError):
            await ranking_ops.move_rank(ADMIN, category.id, a.id, "up")
        with pytest.raises(ValidationError):
            await ranking_ops.move_rank(ADMIN, category.id, b.id, "down")

    async def test_edit_stats_rejects_negative_values(self, ranking_ops, category, ranked_teams):
        a, = await ranked_teams(category.id, 1)
        with pytest.raises(ValidationError):
            await ranking_ops.edit_stats(ADMIN, category.id, a.id, wins=-1)

    async def test_edit_stats_records_old_and_new_values(self, ranking_ops, audit_ops, category, ranked_teams):
        a, = await ranked_teams(category.id, 1)

        await ranking_ops.edit_stats(ADMIN, category.id, a.id, points=1200, notes="import")

        entry, = await audit_ops.get_audit_log(action=AuditAction.EDIT_STATS)
        assert entry.old_values['points'] == Config.STARTING_POINTS
        assert entry.new_values['points'] == 1200

    async def test_seed_ranking(self, ranking_ops, audit_ops, category, ranked_teams, team_factory):
        await ranked_teams(category.id, 2)
        team = await team_factory()

        ranking = await ranking_ops.seed_ranking(ADMIN, category.id, team.id)

        assert ranking.rank == 3
        entry, = await audit_ops.get_audit_log(action=AuditAction.SEED_RANKING)
        assert entry.team_id == team.id

    async def test_admin_only(self, ranking_ops, category, ranked_teams):
        a, b = await ranked_teams(category.id, 2)
        with pytest.raises(UnauthorizedError):
            await ranking_ops.move_rank(STRANGER, category.id, b.id, "up")
        with pytest.raises(UnauthorizedError):
            await ranking_ops.edit_stats(STRANGER, category.id, a.id, points=1)


class TestRankPermutation:

    @pytest.mark.parametrize("seed", [7, 21, 1337])
    async def test_random_concurrent_batches_keep_ranks_dense(self, ranking_ops, category, ranked_teams, team_factory, seed):
        rng = random.Random(seed)
        ranked = [t.id for t in await ranked_teams(category.id, 6)]
        spare = [(await team_factory()).id for _ in range(12)]

        for _ in range(6):
            batch = []
            for _ in range(rng.randint(3, 6)):
                choice = rng.random()
                if choice < 0.35 and spare:
                    team_id = spare.pop()
                    ranked.append(team_id)
                    batch.append(ranking_ops.insert_at_next_rank(team_id, category.id))
                elif choice < 0.6 and len(ranked) > 2:
                    team_id = ranked.pop(rng.randrange(len(ranked)))
                    batch.append(ranking_ops.remove_from_category(category.id, team_id))
                elif len(ranked) >= 2:
                    a, b = rng.sample(ranked, 2)
                    batch.append(ranking_ops.swap_ranks(category.id, a, b))

            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                # A swap may name a team removed earlier in the same batch
                if isinstance(result, Exception):
                    assert isinstance(result, LadderException)

            report = await ranking_ops.verify_rank_permutation(category.id)
            assert report.is_valid, report
            assert report.count == len(ranked)


class TestStandings:

    async def test_rows_in_rank_order_with_frozen_label(self, ranking_ops, freeze_ops, category, ranked_teams):
        a, b = await ranked_teams(category.id, 2)
        now = utc_now()
        await freeze_ops.freeze(ADMIN, b.id, now + timedelta(days=2), now=now)

        rows = await ranking_ops.get_standings(category.id, now=now)

        assert [row.team_id for row in rows] == [a.id, b.id]
        assert not rows[0].is_frozen
        assert rows[1].is_frozen
        assert rows[1].frozen_until_label == "2d 0h"
