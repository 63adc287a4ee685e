"""
Client-side reaction handling: send rate limiting, recency filtering and
de-duplication of reactions delivered more than once.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

from .utils import now_ms

logger = logging.getLogger("livedeck")

# Max 5 reactions per second from one client
RATE_LIMIT_MS = 200
# Reactions older than this are no longer rendered
DEFAULT_MAX_AGE_MS = 10_000

# (deck_id, emoji) -> performs the network call, raises on failure
Transport = Callable[[str, str], Awaitable[None]]


class SendStatus(Enum):
    SENT = "sent"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(frozen=True)
class SendResult:
    status: SendStatus
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is SendStatus.SENT

    @property
    def rate_limited(self) -> bool:
        return self.status is SendStatus.RATE_LIMITED


class ReactionService:
    """
    Per-client reaction state.

    The last-sent timestamp is claimed before the network call so a second
    send racing the first is still limited, and handed back if the call fails.
    """

    def __init__(
        self,
        transport: Transport,
        rate_limit_ms: int = RATE_LIMIT_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._transport = transport
        self.rate_limit_ms = rate_limit_ms
        self._clock = clock
        self.last_reaction_time: Optional[int] = None
        self._seen: set[str] = set()

    def is_rate_limited(self) -> bool:
        if self.last_reaction_time is None:
            return False
        return (self._clock() - self.last_reaction_time) < self.rate_limit_ms

    async def send_reaction(self, deck_id: str, emoji: str) -> SendResult:
        if not deck_id:
            return SendResult(SendStatus.FAILED, "No deckId")

        if self.is_rate_limited():
            logger.debug("Reaction rate limited")
            return SendResult(SendStatus.RATE_LIMITED)

        previous = self.last_reaction_time
        self.last_reaction_time = self._clock()
        try:
            await self._transport(deck_id, emoji)
        except Exception as e:
            self.last_reaction_time = previous
            logger.error(f"Failed to send reaction: {e}")
            return SendResult(SendStatus.FAILED, str(e) or type(e).__name__)

        logger.debug(f"Reaction sent: {emoji}")
        return SendResult(SendStatus.SENT)

    # De-duplication

    def has_seen(self, reaction_id: str) -> bool:
        return reaction_id in self._seen

    def mark_seen(self, reaction_id: str) -> None:
        self._seen.add(reaction_id)

    def cleanup_seen(self, valid_ids: Iterable[str]) -> None:
        """Forget every seen ID that is not in the currently valid set"""
        self._seen.intersection_update(valid_ids)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    # Recency

    def filter_recent(self, reactions: list[dict], max_age_ms: int = DEFAULT_MAX_AGE_MS) -> list[dict]:
        return filter_recent(reactions, max_age_ms, now=self._clock())

    def reset(self) -> None:
        self.last_reaction_time = None
        self._seen.clear()


def filter_recent(reactions: list[dict], max_age_ms: int = DEFAULT_MAX_AGE_MS, now: Optional[int] = None) -> list[dict]:
    """Keep reactions younger than max_age_ms, preserving order"""
    now = now_ms() if now is None else now
    return [r for r in reactions if now - r["ts"] < max_age_ms]
