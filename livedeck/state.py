"""
State Store and Event Bus contracts.

The store holds durable deck state plus a short-lived reaction queue; the
bus fans ephemeral events out to whoever is subscribed right now. Two
implementations exist (memory_backend, redis_backend) and create_backend()
picks one from Settings.
"""
from abc import ABC, abstractmethod

from .config import Settings
from .errors import ConfigurationError
from .events import DeckState

# Upper bound on queued fallback reactions per deck
MAX_QUEUED_REACTIONS = 100


class Subscription(ABC):
    """A live subscription to one deck channel, owned by a single connection."""

    @abstractmethod
    async def get(self) -> str:
        """Wait for the next published message. Raises if the subscription breaks."""

    @abstractmethod
    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""


class StateStore(ABC):

    @abstractmethod
    async def get_deck_state(self, deck_id: str) -> DeckState:
        """Current durable state; a default DeckState if nothing was written."""

    @abstractmethod
    async def set_deck_state(self, deck_id: str, state: DeckState) -> None:
        """Overwrite durable state (idempotent)."""

    @abstractmethod
    async def push_reaction(self, deck_id: str, payload: str, ttl: float) -> None:
        """Append a serialized reaction to the deck's TTL-bounded queue."""

    @abstractmethod
    async def recent_reactions(self, deck_id: str) -> list[dict]:
        """Reactions still in the queue, oldest first."""


class EventBus(ABC):

    @abstractmethod
    async def publish(self, deck_id: str, payload: str) -> int:
        """Broadcast to current subscribers. Returns how many received it."""

    @abstractmethod
    async def subscribe(self, deck_id: str) -> Subscription:
        """Start receiving everything published to the deck from now on."""


class Backend(StateStore, EventBus):
    """A store and a bus sharing one connection."""

    async def close(self) -> None:
        pass


def create_backend(settings: Settings) -> Backend:
    """Build the backend selected by configuration"""
    if settings.backend == "redis":
        if not settings.redis_url:
            raise ConfigurationError("REDIS_URL or KV_URL is not configured")
        from .redis_backend import RedisBackend
        return RedisBackend.from_url(settings.redis_url)

    from .memory_backend import MemoryBackend
    return MemoryBackend()
