from ladder_bot.services.notifications import (
    DiscordNotificationDispatcher, NotificationDispatcher, NotificationKind
)


class ExplodingDispatcher(NotificationDispatcher):
    async def dispatch(self, kind, payload):
        raise RuntimeError("gateway down")


async def test_safe_dispatch_swallows_errors():
    assert await ExplodingDispatcher().safe_dispatch(NotificationKind.CHALLENGE_CREATED, {}) is False


async def test_base_dispatcher_only_logs():
    assert await NotificationDispatcher().safe_dispatch(NotificationKind.TEAM_UNFROZEN, {'team_name': "A"})


def test_decline_description_includes_reason():
    text = DiscordNotificationDispatcher._describe(NotificationKind.CHALLENGE_DECLINED, {
        'challenged_team_name': "Bravo",
        'category_name': "Open",
        'reason': "busy",
    })
    assert "**Bravo** declined" in text
    assert "Reason: busy" in text


def test_frozen_description_without_reason():
    text = DiscordNotificationDispatcher._describe(NotificationKind.TEAM_FROZEN, {
        'team_name': "Alpha",
        'frozen_until': "2024-03-10 00:00 UTC",
    })
    assert "frozen until 2024-03-10 00:00 UTC" in text
    assert "Reason" not in text
