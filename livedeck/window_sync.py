"""
Cross-window sync between browsing contexts of the same client (the
audience view and a detached presenter window).

LocalBroadcastHub stands in for the platform's same-origin broadcast
channel; WindowSyncService shares one channel between any number of
listeners and tracks the presenter window's lifecycle.
"""
import asyncio
import copy
import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, Optional, Protocol

logger = logging.getLogger("livedeck")

CHANNEL_NAME = "presentation-sync"
PRESENTER_WINDOW_NAME = "presenter"
PRESENTER_WINDOW_FEATURES = "width=1280,height=720,menubar=no,toolbar=no,location=no,status=no"

SLIDE_CHANGE = "SLIDE_CHANGE"
PRESENTER_OPENED = "PRESENTER_OPENED"
PRESENTER_CLOSED = "PRESENTER_CLOSED"

SyncCallback = Callable[[dict], None]
StatusCallback = Callable[[bool], None]


# ============================================================
# LOCAL BROADCAST
# ============================================================

class BroadcastChannel:
    """One context's end of a named channel."""

    def __init__(self, hub: "LocalBroadcastHub", name: str):
        self.name = name
        self.onmessage: Optional[SyncCallback] = None
        self.closed = False
        self._hub = hub

    def post_message(self, message: dict) -> None:
        if self.closed:
            raise RuntimeError(f"Channel {self.name!r} is closed")
        self._hub._deliver(self, message)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._hub._remove(self)


class LocalBroadcastHub:
    """Delivers each posted message to every other open channel of the same name."""

    def __init__(self):
        self._channels: dict[str, list[BroadcastChannel]] = defaultdict(list)

    def open(self, name: str) -> BroadcastChannel:
        channel = BroadcastChannel(self, name)
        self._channels[name].append(channel)
        return channel

    def channel_count(self, name: str) -> int:
        return len(self._channels.get(name, ()))

    def _deliver(self, sender: BroadcastChannel, message: dict) -> None:
        for channel in list(self._channels.get(sender.name, ())):
            if channel is not sender and channel.onmessage is not None:
                # Each receiver gets its own copy, like a structured clone
                channel.onmessage(copy.deepcopy(message))

    def _remove(self, channel: BroadcastChannel) -> None:
        channels = self._channels.get(channel.name)
        if channels and channel in channels:
            channels.remove(channel)
            if not channels:
                del self._channels[channel.name]


# ============================================================
# PRESENTER WINDOW
# ============================================================

class WindowHandle(Protocol):
    """A window opened by the platform.

    Handles that can report their own closing also provide
    ``add_close_listener(callback)``; the rest are polled.
    """

    closed: bool

    def focus(self) -> None: ...


class WindowOpener(Protocol):
    def open(self, url: str, name: str, features: str) -> Optional[WindowHandle]: ...


class PresenterWindowState(Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"


class WindowSyncService:
    """Shared sync channel plus presenter window tracking.

    The channel is created on first use and released when the last listener
    unsubscribes; the next subscribe starts from scratch.
    """

    def __init__(
        self,
        hub: LocalBroadcastHub,
        opener: WindowOpener,
        channel_name: str = CHANNEL_NAME,
        poll_interval: float = 1.0,
    ):
        self._hub = hub
        self._opener = opener
        self.channel_name = channel_name
        self.poll_interval = poll_interval
        self.channel: Optional[BroadcastChannel] = None
        self._listeners: list[SyncCallback] = []

        self.window_state = PresenterWindowState.CLOSED
        self._window: Optional[WindowHandle] = None
        self._on_window_status: Optional[StatusCallback] = None
        self._poll_task: Optional[asyncio.Task] = None

    # Channel

    def _ensure_channel(self) -> BroadcastChannel:
        if self.channel is None:
            self.channel = self._hub.open(self.channel_name)
            self.channel.onmessage = self._dispatch
        return self.channel

    def _dispatch(self, message: dict) -> None:
        for listener in list(self._listeners):
            listener(message)

    def _release_channel(self) -> None:
        if self.channel is not None:
            self.channel.close()
            self.channel = None

    def subscribe(self, callback: SyncCallback) -> Callable[[], None]:
        self._ensure_channel()
        self._listeners.append(callback)
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            self._listeners.remove(callback)
            if not self._listeners:
                self._release_channel()

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def broadcast_slide_change(self, slide_index: int) -> None:
        self._ensure_channel().post_message({"type": SLIDE_CHANGE, "slideIndex": slide_index})

    # Presenter window

    def open_presenter_window(self, url: str, on_status_change: StatusCallback) -> None:
        """Open the presenter window, or focus it if it is already open."""
        if self.window_state is PresenterWindowState.OPEN:
            if not self._window.closed:
                self._window.focus()
                return
            # Closed but not yet noticed by the watcher
            self._handle_window_closed()
        elif self.window_state is PresenterWindowState.OPENING:
            return

        self.window_state = PresenterWindowState.OPENING
        window = self._opener.open(url, PRESENTER_WINDOW_NAME, PRESENTER_WINDOW_FEATURES)
        if window is None:
            logger.warning("Presenter window was blocked")
            self.window_state = PresenterWindowState.CLOSED
            return

        self._window = window
        self._on_window_status = on_status_change
        self.window_state = PresenterWindowState.OPEN
        window.focus()
        on_status_change(True)
        self._ensure_channel().post_message({"type": PRESENTER_OPENED})
        self._watch(window)

    def is_presenter_window_open(self) -> bool:
        return (
            self.window_state is PresenterWindowState.OPEN
            and self._window is not None
            and not self._window.closed
        )

    def _watch(self, window: WindowHandle) -> None:
        add_close_listener = getattr(window, "add_close_listener", None)
        if callable(add_close_listener):
            add_close_listener(lambda: self._handle_window_closed(window))
        else:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_closed(window))

    async def _poll_closed(self, window: WindowHandle) -> None:
        while not window.closed:
            await asyncio.sleep(self.poll_interval)
        self._poll_task = None
        self._handle_window_closed(window)

    def _handle_window_closed(self, window: Optional[WindowHandle] = None) -> None:
        if self.window_state is not PresenterWindowState.OPEN:
            return
        if window is not None and window is not self._window:
            return

        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._window = None
        self.window_state = PresenterWindowState.CLOSED

        on_status_change, self._on_window_status = self._on_window_status, None
        if on_status_change is not None:
            on_status_change(False)
        if self.channel is not None:
            self.channel.post_message({"type": PRESENTER_CLOSED})
        logger.info("Presenter window closed")

    def shutdown(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        self._listeners.clear()
        self._release_channel()
