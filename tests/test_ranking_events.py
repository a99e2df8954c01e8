import json

import redis.asyncio as redis

from ladder_bot.services.ranking_events import RankingEventPublisher


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []
        self.closed = False

    async def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        self.published.append((channel, message))

    async def aclose(self):
        self.closed = True


async def test_publish_sends_json_to_category_channel():
    client = FakeRedis()
    publisher = RankingEventPublisher(client)

    assert await publisher.publish(3, "ranks_swapped", {'team_a_id': 1, 'team_b_id': 2})

    channel, message = client.published[0]
    assert channel == "ladder:category:3"
    event = json.loads(message)
    assert event['event'] == "ranks_swapped"
    assert event['category_id'] == 3
    assert event['data'] == {'team_a_id': 1, 'team_b_id': 2}
    assert 'published_at' in event


async def test_redis_failure_is_swallowed():
    publisher = RankingEventPublisher(FakeRedis(fail=True))
    assert await publisher.publish(3, "match_result") is False


async def test_no_client_configured(monkeypatch):
    async def no_client():
        return None

    monkeypatch.setattr("ladder_bot.services.ranking_events.RedisUtils.create_redis_client", no_client)
    publisher = RankingEventPublisher()

    assert await publisher.publish(1, "ranking_inserted") is False


async def test_close_releases_client():
    client = FakeRedis()
    publisher = RankingEventPublisher(client)
    await publisher.close()
    assert client.closed
