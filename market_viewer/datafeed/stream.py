"""
Resilient live-data subscription.

Handles:
1. Connect / read loop over an injectable transport (aiohttp websocket by default)
2. Exponential reconnect backoff, capped, reset on every successful open
3. Periodic polling fallback that never builds a backlog
4. Explicit suspend()/resume() for hidden or minimised views
5. Deterministic teardown: no task, timer or socket survives close()

State machine:
    CONNECTING -> OPEN -> CLOSED (close() only)
                       -> RECONNECTING(attempt) -> CONNECTING (after delay)

Connect failures and abnormal closes share the same reconnect path. Any
close that was not requested through close() counts as abnormal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

import aiohttp

from .messages import parse_trade_event
from ..types import ConnectionPhase, ConnectionState, TradeEvent

logger = logging.getLogger(__name__)

# Backoff: min(MAX, BASE * 2^min(attempt, MAX_EXPONENT))
BASE_DELAY_MS = 500
MAX_DELAY_MS = 30_000
MAX_EXPONENT = 6


def reconnect_delay_ms(
    attempt: int,
    base_ms: int = BASE_DELAY_MS,
    max_ms: int = MAX_DELAY_MS,
    max_exponent: int = MAX_EXPONENT,
) -> int:
    """Delay before reconnect number `attempt` (0-based)."""
    return min(max_ms, base_ms * 2 ** min(max(attempt, 0), max_exponent))


class Channel(Protocol):
    """One open stream."""

    def messages(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


class Transport(Protocol):
    """Opens channels. Raises on connect failure."""

    async def connect(self) -> Channel: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class StreamConnection:
    """
    One logical subscription that survives drops.

    Usage:
        conn = StreamConnection(transport, on_event=tracker.apply_trade)
        conn.open()          # inside a running event loop
        ...
        conn.close()         # synchronous teardown
        await conn.wait_closed()

    Thread-safety: NOT thread-safe. Every method must run on the loop thread.
    """

    def __init__(
        self,
        transport: Transport,
        on_event: Callable[[TradeEvent], object],
        *,
        on_state: Callable[[ConnectionState], object] | None = None,
        poll: Callable[[], Awaitable[object]] | None = None,
        poll_interval: float | None = None,
        call_later: CallLater | None = None,
        base_delay_ms: int = BASE_DELAY_MS,
        max_delay_ms: int = MAX_DELAY_MS,
        max_exponent: int = MAX_EXPONENT,
        name: str = "stream",
    ) -> None:
        self.name = name
        self._transport = transport
        self._on_event = on_event
        self._on_state = on_state
        self._poll = poll
        self._poll_interval = poll_interval
        self._call_later = call_later or self._loop_call_later
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._max_exponent = max_exponent

        self._state = ConnectionState(ConnectionPhase.CLOSED)
        self._attempt: int = 0
        self.last_delay_ms: int | None = None

        self._reader: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._channel: Channel | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._poll_timer: TimerHandle | None = None

        self._started = False
        self._closing = False
        self._suspended = False
        self._reconnect_due = False

    @staticmethod
    def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def closed(self) -> bool:
        return self._closing

    @property
    def pending_timers(self) -> int:
        return sum(t is not None for t in (self._reconnect_timer, self._poll_timer))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start connecting (and polling). Idempotent while running."""
        if self._closing:
            raise RuntimeError(f"{self.name}: connection already closed")
        if self._started:
            return
        self._started = True
        if self._suspended:
            self._reconnect_due = True
            return
        self._connect_now()
        self._arm_poll()

    def suspend(self) -> None:
        """Pause backoff and poll timers while the view is hidden."""
        if self._suspended or self._closing:
            return
        self._suspended = True
        if self._reconnect_timer is not None:
            self._reconnect_due = True
        self._cancel_timers()
        logger.debug("%s: suspended", self.name)

    def resume(self) -> None:
        """One immediate poll/connect attempt, then normal scheduling."""
        if not self._suspended or self._closing:
            return
        self._suspended = False
        logger.debug("%s: resumed", self.name)
        if not self._started:
            return
        if self._reconnect_due:
            self._connect_now()
        self._start_poll()
        self._arm_poll()

    def close(self) -> None:
        """
        Tear down synchronously: timers cancelled, tasks cancelled, state CLOSED.

        The socket itself is closed by the cancelled reader; await
        wait_closed() to be sure it is gone.
        """
        if self._closing:
            return
        self._closing = True
        self._reconnect_due = False
        self._cancel_timers()
        for task in (self._reader, self._poller):
            if task is not None and not task.done():
                task.cancel()
        self._set_state(ConnectionState(ConnectionPhase.CLOSED))

    async def wait_closed(self) -> None:
        """Wait until reader and poller have finished and the socket is closed."""
        tasks = [t for t in (self._reader, self._poller) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._channel is not None:
            channel, self._channel = self._channel, None
            await self._close_channel(channel)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _connect_now(self) -> None:
        self._cancel_reconnect_timer()
        self._reconnect_due = False
        self._set_state(ConnectionState(ConnectionPhase.CONNECTING))
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            channel = await self._transport.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s: connect failed: %s", self.name, e)
            self._schedule_reconnect()
            return

        self._channel = channel
        try:
            if self._closing:
                return
            self._attempt = 0
            self._set_state(ConnectionState(ConnectionPhase.OPEN))
            logger.info("%s: connected", self.name)

            async for raw in channel.messages():
                self._dispatch(raw)

            logger.warning("%s: stream closed by remote", self.name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s: stream dropped: %s", self.name, e)
        finally:
            self._channel = None
            await self._close_channel(channel)

        self._schedule_reconnect()

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.debug("%s: error while closing channel: %s", self.name, e)

    def _dispatch(self, raw: str | bytes) -> None:
        """
        Parse and forward one payload.

        HOT PATH - called for every stream message.
        """
        event = parse_trade_event(raw)
        if event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("%s: trade handler failed", self.name)

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return

        delay_ms = reconnect_delay_ms(
            self._attempt, self._base_delay_ms, self._max_delay_ms, self._max_exponent,
        )
        self._attempt += 1
        self.last_delay_ms = delay_ms
        self._set_state(ConnectionState(ConnectionPhase.RECONNECTING, self._attempt))

        if self._suspended:
            self._reconnect_due = True
            logger.info("%s: reconnect deferred until resume", self.name)
            return

        logger.info("%s: reconnecting in %d ms (attempt %d)", self.name, delay_ms, self._attempt)
        self._reconnect_timer = self._call_later(delay_ms / 1000, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if self._closing or self._suspended:
            return
        self._connect_now()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _arm_poll(self) -> None:
        if self._poll is None or not self._poll_interval:
            return
        if self._closing or self._suspended or self._poll_timer is not None:
            return
        self._poll_timer = self._call_later(self._poll_interval, self._on_poll_timer)

    def _on_poll_timer(self) -> None:
        self._poll_timer = None
        self._start_poll()
        self._arm_poll()

    def _start_poll(self) -> None:
        if self._poll is None or self._closing:
            return
        if self._poller is not None and not self._poller.done():
            return  # Previous poll still running, skip instead of queueing
        self._poller = asyncio.get_running_loop().create_task(self._run_poll())

    async def _run_poll(self) -> None:
        try:
            await self._poll()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s: poll failed: %s", self.name, e)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_reconnect_timer()
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug("%s: %s -> %s", self.name, self._state, state)
        self._state = state
        if self._on_state is not None:
            try:
                self._on_state(state)
            except Exception:
                logger.exception("%s: state handler failed", self.name)


class AiohttpChannel:
    """Websocket channel yielding raw text/binary payloads."""

    __slots__ = ('_ws',)

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def messages(self) -> AsyncIterator[str | bytes]:
        # Iteration ends on CLOSE/CLOSING/CLOSED frames
        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {self._ws.exception()}")

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpTransport:
    """Websocket transport over a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        heartbeat: float | None = 30.0,
    ) -> None:
        self._session = session
        self.url = url
        self._heartbeat = heartbeat or None

    async def connect(self) -> AiohttpChannel:
        ws = await self._session.ws_connect(self.url, heartbeat=self._heartbeat)
        return AiohttpChannel(ws)
