"""
Streaming gateway: one text/event-stream per connected viewer.

Every connection gets the durable snapshot as an ``init`` frame, then each
message published on its deck's channel, plus a heartbeat comment frame so
proxies keep the connection open. Connections share nothing with each other;
a broken subscriber only ever tears down itself.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from aiohttp import web

from .errors import TransportError, ValidationError
from .events import HEARTBEAT_FRAME, DeckState, encode_data, encode_init
from .state import Backend, Subscription
from .utils import generate_client_id, is_valid_deck_id

logger = logging.getLogger("livedeck")

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Access-Control-Allow-Origin": "*",
}

Send = Callable[[bytes], Awaitable[None]]


class ConnectionState(Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


class SubscriberConnection:
    """
    Server side of a single live stream.

    Owns the deck subscription, the outbound frame queue and the heartbeat
    task. Nothing else may touch them, and close() releases them exactly once.
    """

    def __init__(
        self,
        deck_id: str,
        backend: Backend,
        heartbeat_interval: float = 15.0,
        queue_size: int = 256,
        write_timeout: float = 10.0,
    ):
        self.deck_id = deck_id
        self.client_id = generate_client_id()
        self.state = ConnectionState.CONNECTING
        self.outbound: asyncio.Queue[bytes] = asyncio.Queue(maxsize=queue_size)
        self.subscription: Optional[Subscription] = None
        self.heartbeat_task: Optional[asyncio.Task] = None
        self._backend = backend
        self._heartbeat_interval = heartbeat_interval
        self._write_timeout = write_timeout
        self._snapshot = DeckState()
        self._tasks: list[asyncio.Task] = []

    async def connect(self) -> DeckState:
        """
        Subscribe, then read the durable snapshot.

        Subscribing first means anything published while the snapshot is read
        is queued rather than lost, so the client can never end up behind.
        """
        try:
            self.subscription = await self._backend.subscribe(self.deck_id)
            self._snapshot = await self._backend.get_deck_state(self.deck_id)
        except BaseException:
            await self.close()
            raise
        return self._snapshot

    async def stream(self, send: Send) -> None:
        """Send the snapshot and forward events until something breaks."""
        if self.state is not ConnectionState.CONNECTING:
            return
        try:
            await self._write(send, encode_init(self._snapshot))
            logger.debug(f"Sent init to {self.client_id}: slide={self._snapshot.slide}")

            self.state = ConnectionState.STREAMING
            reader = asyncio.create_task(self._forward())
            self.heartbeat_task = asyncio.create_task(self._heartbeat())
            writer = asyncio.create_task(self._drain(send))
            self._tasks = [reader, self.heartbeat_task, writer]

            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self._log_failure(task.exception())
        except TransportError as e:
            self._log_failure(e)
        finally:
            await self.close()

    async def close(self) -> None:
        """Cancel the heartbeat and release the subscription. Idempotent."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.subscription is not None:
            await self.subscription.close()

    async def _forward(self) -> None:
        while True:
            message = await self.subscription.get()
            self._enqueue(encode_data(message))

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            self._enqueue(HEARTBEAT_FRAME)

    async def _drain(self, send: Send) -> None:
        while True:
            frame = await self.outbound.get()
            await self._write(send, frame)

    def _enqueue(self, frame: bytes) -> None:
        try:
            self.outbound.put_nowait(frame)
        except asyncio.QueueFull:
            raise TransportError(self.deck_id, "client is not keeping up")

    async def _write(self, send: Send, frame: bytes) -> None:
        try:
            await asyncio.wait_for(send(frame), timeout=self._write_timeout)
        except asyncio.TimeoutError:
            raise TransportError(self.deck_id, "write timed out")
        except (ConnectionError, RuntimeError) as e:
            # aiohttp raises ConnectionResetError (or RuntimeError on a closed
            # transport) once the client has gone away
            raise TransportError(self.deck_id, str(e) or type(e).__name__) from e

    def _log_failure(self, exc: BaseException) -> None:
        if isinstance(exc, TransportError):
            logger.info(f"📡 {self.client_id} dropped: {exc.reason}")
        else:
            logger.error(f"Stream error for deck {self.deck_id} ({self.client_id}): {exc!r}")


class StreamingGateway:
    """Accepts live-stream requests and keeps track of open connections."""

    def __init__(
        self,
        backend: Backend,
        heartbeat_interval: float = 15.0,
        queue_size: int = 256,
        write_timeout: float = 10.0,
    ):
        self.backend = backend
        self.heartbeat_interval = heartbeat_interval
        self.queue_size = queue_size
        self.write_timeout = write_timeout
        self.connections: set[SubscriberConnection] = set()

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """GET /live/{deck_id}"""
        deck_id = request.match_info["deck_id"]
        if not is_valid_deck_id(deck_id):
            raise ValidationError("deck_id", "must be 1-128 letters, digits, '-' or '_'")

        conn = SubscriberConnection(
            deck_id,
            self.backend,
            heartbeat_interval=self.heartbeat_interval,
            queue_size=self.queue_size,
            write_timeout=self.write_timeout,
        )
        # Backend failures here still surface as a proper HTTP error
        await conn.connect()

        self.connections.add(conn)
        logger.info(f"📡 {conn.client_id} connected to deck {deck_id} (total: {self.connection_count})")
        response = web.StreamResponse(headers=SSE_HEADERS)
        try:
            await response.prepare(request)
            await conn.stream(response.write)
        finally:
            await conn.close()
            self.connections.discard(conn)
            logger.info(f"📡 {conn.client_id} left deck {deck_id} (remaining: {self.connection_count})")
        return response

    async def close_all(self) -> None:
        """Tear down every open stream (application shutdown)."""
        for conn in list(self.connections):
            await conn.close()
