"""
Redis-backed store and bus (hash + list + pub/sub) for multi-process deployments.
"""
import functools
import json
import logging
import math

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .errors import ConfigurationError
from .events import DeckState, channel_name, reactions_key, state_key
from .state import MAX_QUEUED_REACTIONS, Backend, Subscription
from .utils import now_ms

logger = logging.getLogger("livedeck")

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError, OSError)


def _surface_outage(func):
    """Report an unreachable Redis as a configuration problem, not a bug."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _UNAVAILABLE as e:
            raise ConfigurationError("Redis is unavailable", cause=e) from e

    return wrapper


class RedisSubscription(Subscription):

    def __init__(self, pubsub, channel: str):
        self._pubsub = pubsub
        self._channel = channel
        self._closed = False

    async def get(self) -> str:
        while True:
            message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
            if message is None or message.get("type") != "message":
                continue
            data = message["data"]
            return data.decode() if isinstance(data, bytes) else data

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self._channel)
        except _UNAVAILABLE as e:
            logger.debug(f"Unsubscribe from {self._channel} failed: {e}")
        finally:
            await self._pubsub.aclose()


class RedisBackend(Backend):

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(redis.from_url(url, decode_responses=True))

    @_surface_outage
    async def get_deck_state(self, deck_id: str) -> DeckState:
        return DeckState.from_mapping(await self._client.hgetall(state_key(deck_id)))

    @_surface_outage
    async def set_deck_state(self, deck_id: str, state: DeckState) -> None:
        await self._client.hset(state_key(deck_id), mapping={"slide": str(state.slide)})

    @_surface_outage
    async def push_reaction(self, deck_id: str, payload: str, ttl: float) -> None:
        key = reactions_key(deck_id)
        entry = json.dumps({"expires_at": now_ms() + int(ttl * 1000), "event": payload})
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.rpush(key, entry)
            pipe.ltrim(key, -MAX_QUEUED_REACTIONS, -1)
            pipe.expire(key, max(math.ceil(ttl), 1))
            await pipe.execute()

    @_surface_outage
    async def recent_reactions(self, deck_id: str) -> list[dict]:
        now = now_ms()
        reactions = []
        for raw in await self._client.lrange(reactions_key(deck_id), 0, -1):
            entry = json.loads(raw)
            if entry["expires_at"] > now:
                reactions.append(json.loads(entry["event"]))
        return reactions

    @_surface_outage
    async def publish(self, deck_id: str, payload: str) -> int:
        return await self._client.publish(channel_name(deck_id), payload)

    @_surface_outage
    async def subscribe(self, deck_id: str) -> RedisSubscription:
        channel = channel_name(deck_id)
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except BaseException:
            await pubsub.aclose()
            raise
        return RedisSubscription(pubsub, channel)

    async def close(self) -> None:
        await self._client.aclose()
