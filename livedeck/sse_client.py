"""
Client for the live event stream.

One HTTP stream per URL, shared by every listener of that URL. A dropped
stream is reopened with exponential backoff; each reconnect starts with a
fresh ``init`` snapshot, so nothing has to be replayed.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .events import parse_frame

logger = logging.getLogger("livedeck")

EventListener = Callable[[dict[str, Any]], None]
StatusListener = Callable[["FeedStatus"], None]


def reconnect_delay(attempts: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Backoff before reconnect number ``attempts + 1``: 1s, 2s, 4s, ... capped."""
    return min(base * (2 ** attempts), cap)


@dataclass(frozen=True)
class FeedStatus:
    """connecting, connected or reconnecting"""

    status: str
    attempts: int = 0
    delay: float | None = None


@dataclass
class _Feed:
    url: str
    # Keyed per subscription so the same callable can subscribe twice
    listeners: dict[object, EventListener] = field(default_factory=dict)
    status_listeners: dict[object, StatusListener] = field(default_factory=dict)
    attempts: int = 0
    task: asyncio.Task[None] | None = None


async def iter_events(content: aiohttp.StreamReader) -> AsyncIterator[dict[str, Any]]:
    """Parse an event-stream body into event dicts, skipping heartbeats."""
    buffer = b""
    async for chunk in content.iter_any():
        # Split on bytes: a chunk may end in the middle of a multi-byte character
        buffer = (buffer + chunk).replace(b"\r\n", b"\n")
        while b"\n\n" in buffer:
            frame, buffer = buffer.split(b"\n\n", 1)
            event = parse_frame(frame.decode("utf-8", errors="replace"))
            if event is not None:
                yield event


class LiveFeed:
    """Shared, self-healing subscriptions to live deck streams.

    Example:
        >>> feed = LiveFeed(session)
        >>> unsubscribe = feed.subscribe("http://host/live/deck-1", print)
        >>> ...
        >>> unsubscribe()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        read_timeout: float = 45.0,
        max_delay: float = 10.0,
    ) -> None:
        """Initialize the feed.

        Args:
            session: HTTP session used for every stream
            read_timeout: Seconds without any bytes (heartbeats included)
                before a stream is considered dead
            max_delay: Upper bound for the reconnect backoff
        """
        self._session = session
        self._read_timeout = read_timeout
        self._max_delay = max_delay
        self._feeds: dict[str, _Feed] = {}

    def subscribe(
        self,
        url: str,
        on_event: EventListener,
        on_status: StatusListener | None = None,
    ) -> Callable[[], None]:
        """Listen to a stream, opening it if needed. Returns the unsubscribe function."""
        if not url:
            logger.warning("LiveFeed: no URL provided")
            return lambda: None

        feed = self._feeds.get(url)
        if feed is None:
            feed = _Feed(url=url)
            self._feeds[url] = feed
            feed.task = asyncio.get_running_loop().create_task(self._run(feed))

        token = object()
        feed.listeners[token] = on_event
        if on_status:
            feed.status_listeners[token] = on_status

        def unsubscribe() -> None:
            if token not in feed.listeners:
                return
            del feed.listeners[token]
            feed.status_listeners.pop(token, None)
            # A later subscriber may have opened a new feed under the same URL
            if not feed.listeners and self._feeds.get(url) is feed:
                self.disconnect(url)

        return unsubscribe

    def is_connected(self, url: str) -> bool:
        return url in self._feeds

    def disconnect(self, url: str) -> None:
        feed = self._feeds.pop(url, None)
        if feed is None:
            return
        if feed.task is not None:
            feed.task.cancel()
        logger.info(f"🔌 Live feed disconnected: {url}")

    async def close(self) -> None:
        """Disconnect every stream and wait for the tasks to finish."""
        tasks = [feed.task for feed in self._feeds.values() if feed.task is not None]
        for url in list(self._feeds):
            self.disconnect(url)
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, feed: _Feed) -> None:
        while self._feeds.get(feed.url) is feed:
            self._notify(feed, FeedStatus("connecting", attempts=feed.attempts))
            try:
                await self._stream(feed)
                logger.info(f"Live feed ended by server: {feed.url}")
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError) as e:
                logger.warning(f"❌ Live feed error on {feed.url}: {e!r}")
            except Exception:
                logger.exception(f"❌ Unexpected live feed failure on {feed.url}")

            delay = reconnect_delay(feed.attempts, cap=self._max_delay)
            feed.attempts += 1
            self._notify(feed, FeedStatus("reconnecting", attempts=feed.attempts, delay=delay))
            logger.info(f"🔄 Reconnecting in {delay}s...")
            await asyncio.sleep(delay)

    async def _stream(self, feed: _Feed) -> None:
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self._read_timeout)
        headers = {"Accept": "text/event-stream"}
        async with self._session.get(feed.url, headers=headers, timeout=timeout) as response:
            if response.status != 200:
                raise ConnectionError(f"stream responded with HTTP {response.status}")

            feed.attempts = 0
            self._notify(feed, FeedStatus("connected"))
            logger.info(f"✅ Live feed connected: {feed.url}")

            async for event in iter_events(response.content):
                for listener in list(feed.listeners.values()):
                    try:
                        listener(event)
                    except Exception:
                        logger.exception(f"Live feed listener failed on {event.get('type')} event")

    def _notify(self, feed: _Feed, status: FeedStatus) -> None:
        for listener in list(feed.status_listeners.values()):
            listener(status)
