"""Tests for livedeck.redis_backend against a mocked redis client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from livedeck.errors import ConfigurationError
from livedeck.events import DeckState, ReactionEvent, channel_name, reactions_key, state_key
from livedeck.redis_backend import RedisBackend, RedisSubscription


def _client() -> MagicMock:
    client = MagicMock()
    client.hgetall = AsyncMock(return_value={})
    client.hset = AsyncMock()
    client.lrange = AsyncMock(return_value=[])
    client.publish = AsyncMock(return_value=0)
    client.aclose = AsyncMock()
    return client


class TestDeckState:

    @pytest.mark.asyncio
    async def test_reads_string_hash(self) -> None:
        client = _client()
        client.hgetall.return_value = {"slide": "7"}

        state = await RedisBackend(client).get_deck_state("d")

        assert state == DeckState(slide=7)
        client.hgetall.assert_awaited_once_with(state_key("d"))

    @pytest.mark.asyncio
    async def test_missing_hash(self) -> None:
        assert await RedisBackend(_client()).get_deck_state("d") == DeckState(slide=0)

    @pytest.mark.asyncio
    async def test_write(self) -> None:
        client = _client()
        await RedisBackend(client).set_deck_state("d", DeckState(slide=4))
        client.hset.assert_awaited_once_with(state_key("d"), mapping={"slide": "4"})

    @pytest.mark.asyncio
    async def test_outage_is_a_configuration_error(self) -> None:
        client = _client()
        client.hgetall.side_effect = RedisConnectionError("Connection refused")

        with pytest.raises(ConfigurationError) as exc_info:
            await RedisBackend(client).get_deck_state("d")

        assert "Connection refused" in exc_info.value.details["cause"]


class TestReactions:

    @pytest.mark.asyncio
    async def test_push_uses_one_pipeline(self) -> None:
        client = _client()
        pipe = MagicMock()
        pipe.execute = AsyncMock()
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        payload = ReactionEvent(emoji="🔥", id="r1").to_json()

        with patch("livedeck.redis_backend.now_ms", return_value=1_000):
            await RedisBackend(client).push_reaction("d", payload, ttl=5)

        key = reactions_key("d")
        entry = json.loads(pipe.rpush.call_args.args[1])
        assert pipe.rpush.call_args.args[0] == key
        assert entry == {"expires_at": 6_000, "event": payload}
        pipe.ltrim.assert_called_once_with(key, -100, -1)
        pipe.expire.assert_called_once_with(key, 5)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_entries_are_filtered(self) -> None:
        client = _client()
        old = ReactionEvent(emoji="a", id="old").to_json()
        fresh = ReactionEvent(emoji="b", id="fresh").to_json()
        client.lrange.return_value = [
            json.dumps({"expires_at": 900, "event": old}),
            json.dumps({"expires_at": 1_500, "event": fresh}),
        ]

        with patch("livedeck.redis_backend.now_ms", return_value=1_000):
            reactions = await RedisBackend(client).recent_reactions("d")

        assert [r["id"] for r in reactions] == ["fresh"]


class TestBus:

    @pytest.mark.asyncio
    async def test_publish_returns_receiver_count(self) -> None:
        client = _client()
        client.publish.return_value = 3

        assert await RedisBackend(client).publish("d", "payload") == 3
        client.publish.assert_awaited_once_with(channel_name("d"), "payload")

    @pytest.mark.asyncio
    async def test_subscription_skips_control_messages(self) -> None:
        pubsub = MagicMock()
        pubsub.get_message = AsyncMock(side_effect=[
            None,
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": "hello"},
        ])
        sub = RedisSubscription(pubsub, "chan")
        assert await sub.get() == "hello"

    @pytest.mark.asyncio
    async def test_subscription_close_is_idempotent(self) -> None:
        pubsub = MagicMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        sub = RedisSubscription(pubsub, "chan")

        await sub.close()
        await sub.close()

        pubsub.unsubscribe.assert_awaited_once_with("chan")
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subscription_close_survives_dead_connection(self) -> None:
        pubsub = MagicMock()
        pubsub.unsubscribe = AsyncMock(side_effect=RedisConnectionError("gone"))
        pubsub.aclose = AsyncMock()

        await RedisSubscription(pubsub, "chan").close()

        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subscribe_failure_releases_pubsub(self) -> None:
        client = _client()
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock(side_effect=RedisConnectionError("gone"))
        pubsub.aclose = AsyncMock()
        client.pubsub.return_value = pubsub

        with pytest.raises(ConfigurationError):
            await RedisBackend(client).subscribe("d")

        pubsub.aclose.assert_awaited_once()
