"""
Freeze window tests
"""

from datetime import timedelta

import pytest

from conftest import ADMIN, STRANGER, RecordingNotifier
from ladder_bot.database.models import AuditAction, Team
from ladder_bot.operations.freeze_operations import FreezeOperations
from ladder_bot.services.notifications import NotificationKind
from ladder_bot.utils.ladder_exceptions import EligibilityReason, NotFoundError, UnauthorizedError, ValidationError
from ladder_bot.utils.time_parser import utc_now


class TestIsFrozen:

    def test_open_window(self):
        now = utc_now()
        team = Team(name="A", is_frozen=True, frozen_until=now + timedelta(hours=1))
        assert FreezeOperations.is_frozen(team, now)

    def test_window_already_ended(self):
        now = utc_now()
        team = Team(name="A", is_frozen=True, frozen_until=now - timedelta(seconds=1))
        assert not FreezeOperations.is_frozen(team, now)

    def test_flag_without_end(self):
        assert not FreezeOperations.is_frozen(Team(name="A", is_frozen=True, frozen_until=None))

    def test_not_flagged(self):
        now = utc_now()
        team = Team(name="A", is_frozen=False, frozen_until=now + timedelta(days=1))
        assert not FreezeOperations.is_frozen(team, now)


class TestFreeze:

    async def test_freeze_sets_window_and_audits(self, freeze_ops, audit_ops, notifier, team_factory):
        team = await team_factory()
        now = utc_now()
        until = now + timedelta(days=3)

        frozen = await freeze_ops.freeze(ADMIN, team.id, until, reason="travelling", now=now)

        assert frozen.is_frozen
        assert frozen.frozen_until == until
        assert frozen.frozen_reason == "travelling"
        assert frozen.frozen_by == ADMIN.user_id

        entry, = await audit_ops.get_audit_log(team_id=team.id)
        assert entry.action == AuditAction.FREEZE_TEAM
        assert entry.old_values['is_frozen'] is False
        assert entry.new_values['frozen_until'] == until.isoformat()

        kind, payload = notifier.sent[-1]
        assert kind == NotificationKind.TEAM_FROZEN
        assert payload['recipient_team_id'] == team.id
        assert payload['remaining'] == "3d 0h"

    async def test_end_must_be_in_the_future(self, freeze_ops, team_factory):
        team = await team_factory()
        now = utc_now()
        with pytest.raises(ValidationError):
            await freeze_ops.freeze(ADMIN, team.id, now, now=now)
        with pytest.raises(ValidationError):
            await freeze_ops.freeze(ADMIN, team.id, now - timedelta(days=1), now=now)

    async def test_admin_only(self, freeze_ops, team_factory):
        team = await team_factory()
        with pytest.raises(UnauthorizedError):
            await freeze_ops.freeze(STRANGER, team.id, utc_now() + timedelta(days=1))

    async def test_unknown_team(self, freeze_ops):
        with pytest.raises(NotFoundError):
            await freeze_ops.freeze(ADMIN, 999, utc_now() + timedelta(days=1))

    async def test_refreeze_replaces_window(self, freeze_ops, db, team_factory):
        team = await team_factory()
        now = utc_now()
        await freeze_ops.freeze(ADMIN, team.id, now + timedelta(days=7), now=now)
        await freeze_ops.freeze(ADMIN, team.id, now + timedelta(days=1), reason="shorter", now=now)

        stored = await db.get_team(team.id)
        assert stored.frozen_until == now + timedelta(days=1)
        assert stored.frozen_reason == "shorter"

    async def test_failing_dispatcher_keeps_the_freeze(self, db, publisher, team_factory):
        team = await team_factory()
        ops = FreezeOperations(db, publisher=publisher, notifier=RecordingNotifier(fail=True))

        await ops.freeze(ADMIN, team.id, utc_now() + timedelta(days=1))

        assert (await db.get_team(team.id)).is_frozen


class TestUnfreeze:

    async def test_unfreeze_clears_every_field(self, freeze_ops, audit_ops, notifier, db, team_factory):
        team = await team_factory()
        await freeze_ops.freeze(ADMIN, team.id, utc_now() + timedelta(days=1), reason="exams")

        await freeze_ops.unfreeze(ADMIN, team.id, notes="back early")

        stored = await db.get_team(team.id)
        assert not stored.is_frozen
        assert stored.frozen_until is None
        assert stored.frozen_reason is None
        assert stored.frozen_by is None
        assert stored.frozen_at is None

        latest = (await audit_ops.get_audit_log(team_id=team.id))[0]
        assert latest.action == AuditAction.UNFREEZE_TEAM
        assert latest.notes == "back early"
        assert notifier.kinds()[-1] == NotificationKind.TEAM_UNFROZEN

    async def test_admin_only(self, freeze_ops, team_factory):
        team = await team_factory()
        with pytest.raises(UnauthorizedError):
            await freeze_ops.unfreeze(STRANGER, team.id)


class TestFreezeGating:

    async def test_frozen_target_cannot_be_challenged_until_window_ends(self, freeze_ops, challenge_ops, category, ranked_teams):
        target, challenger = await ranked_teams(category.id, 2)
        now = utc_now()
        await freeze_ops.freeze(ADMIN, target.id, now + timedelta(days=2), now=now)

        during = await challenge_ops.check_eligibility(challenger.id, target.id, category.id, now=now)
        assert during.reason == EligibilityReason.TARGET_FROZEN

        after = await challenge_ops.check_eligibility(challenger.id, target.id, category.id, now=now + timedelta(days=2, seconds=1))
        assert after.allowed

    async def test_unfreeze_reopens_the_target(self, freeze_ops, challenge_ops, category, ranked_teams):
        target, challenger = await ranked_teams(category.id, 2)
        await freeze_ops.freeze(ADMIN, target.id, utc_now() + timedelta(days=2))
        await freeze_ops.unfreeze(ADMIN, target.id)

        assert (await challenge_ops.check_eligibility(challenger.id, target.id, category.id)).allowed


async def test_get_frozen_teams_ignores_ended_windows(freeze_ops, team_factory):
    first, second, third = [await team_factory() for _ in range(3)]
    now = utc_now()
    await freeze_ops.freeze(ADMIN, first.id, now + timedelta(days=3), now=now)
    await freeze_ops.freeze(ADMIN, second.id, now + timedelta(days=1), now=now)

    frozen = await freeze_ops.get_frozen_teams(as_of=now)
    assert [t.id for t in frozen] == [second.id, first.id]

    assert [t.id for t in await freeze_ops.get_frozen_teams(as_of=now + timedelta(days=2))] == [first.id]
    assert third.id not in [t.id for t in frozen]
