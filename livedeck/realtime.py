"""
Per-client reconciliation of the live stream.

Turns the at-least-once, possibly lossy event stream into a consistent
view: viewers follow the presenter's slide, reactions are rendered once,
and the reaction buffer only ever holds recent entries.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from .reactions import DEFAULT_MAX_AGE_MS, ReactionService, SendResult, SendStatus
from .sse_client import LiveFeed
from .utils import now_ms

logger = logging.getLogger("livedeck")

SlideCallback = Callable[[int], None]
ReactionCallback = Callable[[dict[str, Any]], None]


class RealtimeClient:
    """Live sync for one client (a viewer, or the presenter).

    Example:
        >>> async with aiohttp.ClientSession() as session:
        ...     client = RealtimeClient(session, "https://slides.example.com")
        ...     stop = client.subscribe("keynote", on_slide_change=show_slide)
        ...     await client.send_reaction("keynote", "🎉")
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        token_provider: Callable[[], str | None] = lambda: None,
        feed: LiveFeed | None = None,
        cleanup_interval: float = 5.0,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the client.

        Args:
            session: HTTP session for commands and the live stream
            base_url: Server root, e.g. ``https://slides.example.com``
            token_provider: Returns the presenter token, or None for viewers
            feed: Live stream manager (one is created on the session if omitted)
            cleanup_interval: Seconds between reaction buffer prunes
            max_age_ms: Reactions older than this are dropped
            clock: Epoch-millisecond clock
        """
        self._session = session
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self.feed = feed or LiveFeed(session)
        self.reaction_service = ReactionService(self._post_reaction, clock=clock)
        self.cleanup_interval = cleanup_interval
        self.max_age_ms = max_age_ms
        self._clock = clock

        self.reactions: list[dict[str, Any]] = []
        self._subscriptions = 0
        self._cleanup_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Live stream
    # ------------------------------------------------------------------

    def subscribe(
        self,
        deck_id: str,
        on_slide_change: SlideCallback | None = None,
        on_reaction: ReactionCallback | None = None,
        is_presenter: bool = False,
    ) -> Callable[[], None]:
        """Follow a deck. Returns a function that stops following it."""
        if not deck_id:
            logger.warning("RealtimeClient: no deckId provided")
            return lambda: None

        def on_event(event: dict[str, Any]) -> None:
            self.handle_event(event, on_slide_change, on_reaction, is_presenter)

        stop_feed = self.feed.subscribe(f"{self.base_url}/live/{deck_id}", on_event)
        self._subscriptions += 1
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

        stopped = False

        def unsubscribe() -> None:
            nonlocal stopped
            if stopped:
                return
            stopped = True
            stop_feed()
            self._subscriptions -= 1
            if self._subscriptions == 0 and self._cleanup_task is not None:
                self._cleanup_task.cancel()
                self._cleanup_task = None

        return unsubscribe

    def handle_event(
        self,
        event: dict[str, Any],
        on_slide_change: SlideCallback | None = None,
        on_reaction: ReactionCallback | None = None,
        is_presenter: bool = False,
    ) -> None:
        """Apply one stream event. The presenter drives slides and ignores them."""
        event_type = event.get("type")

        if event_type in ("init", "slide"):
            if is_presenter or on_slide_change is None:
                return
            slide = event.get("slide")
            if isinstance(slide, int) and not isinstance(slide, bool):
                logger.debug(f"Viewer following to slide {slide} ({event_type})")
                on_slide_change(slide)

        elif event_type == "reaction":
            reaction = self._accept_reaction(event)
            if reaction is not None and on_reaction is not None:
                on_reaction(reaction)

    def _accept_reaction(self, event: dict[str, Any]) -> dict[str, Any] | None:
        reaction_id = event.get("id")
        ts = event.get("ts")
        if not reaction_id or not isinstance(ts, (int, float)):
            logger.debug(f"Ignoring malformed reaction: {event!r}")
            return None
        if self.reaction_service.has_seen(reaction_id):
            logger.debug(f"DUPLICATE: ignoring reaction {reaction_id}")
            return None
        # Seen IDs are pruned together with old reactions, so anything that
        # old must not come back as new
        if self._clock() - ts >= self.max_age_ms:
            return None

        self.reaction_service.mark_seen(reaction_id)
        reaction = {"id": reaction_id, "emoji": event.get("emoji"), "ts": ts}
        self.reactions.append(reaction)
        return reaction

    def prune(self) -> None:
        """Drop expired reactions and forget their IDs."""
        recent = self.reaction_service.filter_recent(self.reactions, self.max_age_ms)
        if len(recent) < len(self.reactions):
            self.reactions = recent
        self.reaction_service.cleanup_seen({r["id"] for r in recent})

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.prune()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def publish_slide_change(self, deck_id: str, slide_index: int) -> SendResult:
        """Presenter only: move every viewer to ``slide_index``."""
        if not deck_id:
            return SendResult(SendStatus.FAILED, "No deckId")

        token = self._token_provider()
        if not token:
            logger.error("No presenter token available")
            return SendResult(SendStatus.FAILED, "Not authenticated")

        try:
            async with self._session.post(
                f"{self.base_url}/control/advance/{deck_id}",
                json={"slide": slide_index},
                headers={"Authorization": f"Bearer {token}"},
            ) as response:
                if response.status != 200:
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=f"HTTP {response.status}",
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to publish slide change: {e}")
            return SendResult(SendStatus.FAILED, str(e))

        logger.info(f"Published slide change: {slide_index}")
        return SendResult(SendStatus.SENT)

    async def send_reaction(self, deck_id: str, emoji: str) -> SendResult:
        return await self.reaction_service.send_reaction(deck_id, emoji)

    async def _post_reaction(self, deck_id: str, emoji: str) -> None:
        async with self._session.post(f"{self.base_url}/react/{deck_id}", json={"emoji": emoji}) as response:
            response.raise_for_status()

    async def fetch_recent_reactions(self, deck_id: str) -> list[dict[str, Any]]:
        """Poll the server's reaction queue; returns only reactions not seen before."""
        async with self._session.get(f"{self.base_url}/reactions/{deck_id}") as response:
            response.raise_for_status()
            data = await response.json()

        fresh = []
        for event in self.reaction_service.filter_recent(data.get("reactions", []), self.max_age_ms):
            reaction = self._accept_reaction(event)
            if reaction is not None:
                fresh.append(reaction)
        return fresh

    def get_reactions(self) -> list[dict[str, Any]]:
        return list(self.reactions)

    async def shutdown(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
        self._subscriptions = 0
        await self.feed.close()

    def reset(self) -> None:
        self.reactions = []
        self.reaction_service.reset()
