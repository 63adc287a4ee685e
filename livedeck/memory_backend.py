"""
In-process store and bus for local development and tests.

Only usable when every client talks to the same server process.
"""
import asyncio
import json
import logging
import time
from collections import defaultdict

from .events import DeckState
from .state import MAX_QUEUED_REACTIONS, Backend, Subscription

logger = logging.getLogger("livedeck")


class MemorySubscription(Subscription):

    def __init__(self, backend: "MemoryBackend", deck_id: str, maxsize: int):
        self._backend = backend
        self.deck_id = deck_id
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def get(self) -> str:
        return await self.queue.get()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._backend._discard(self)


class MemoryBackend(Backend):

    def __init__(self, queue_size: int = 1000, clock=time.monotonic):
        self._states: dict[str, DeckState] = {}
        # deck_id -> [(expires_at, payload)]
        self._reactions: dict[str, list[tuple[float, str]]] = defaultdict(list)
        self._subscribers: dict[str, set[MemorySubscription]] = defaultdict(set)
        self._queue_size = queue_size
        self._clock = clock

    # State store

    async def get_deck_state(self, deck_id: str) -> DeckState:
        state = self._states.get(deck_id)
        return DeckState(slide=state.slide) if state else DeckState()

    async def set_deck_state(self, deck_id: str, state: DeckState) -> None:
        self._states[deck_id] = DeckState(slide=state.slide)

    async def push_reaction(self, deck_id: str, payload: str, ttl: float) -> None:
        queue = self._live_reactions(deck_id)
        queue.append((self._clock() + ttl, payload))
        del queue[:-MAX_QUEUED_REACTIONS]

    async def recent_reactions(self, deck_id: str) -> list[dict]:
        return [json.loads(payload) for _, payload in self._live_reactions(deck_id)]

    def _live_reactions(self, deck_id: str) -> list[tuple[float, str]]:
        now = self._clock()
        queue = [item for item in self._reactions[deck_id] if item[0] > now]
        self._reactions[deck_id] = queue
        return queue

    # Event bus

    async def publish(self, deck_id: str, payload: str) -> int:
        delivered = 0
        for sub in list(self._subscribers.get(deck_id, ())):
            try:
                sub.queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.debug(f"Dropping event for a full subscriber on deck {deck_id}")
        return delivered

    async def subscribe(self, deck_id: str) -> MemorySubscription:
        sub = MemorySubscription(self, deck_id, self._queue_size)
        self._subscribers[deck_id].add(sub)
        return sub

    def subscriber_count(self, deck_id: str) -> int:
        return len(self._subscribers.get(deck_id, ()))

    def _discard(self, sub: MemorySubscription) -> None:
        subs = self._subscribers.get(sub.deck_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.deck_id]

    async def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                await sub.close()
