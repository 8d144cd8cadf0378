"""Realtime push channel for SimpliSafe accounts over Socket.IO."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from enum import StrEnum
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import aiohttp
import socketio

from .const import (
    RATE_LIMIT_MAX_INTERVAL,
    SOCKET_BASE,
    SOCKET_NAMESPACE_FMT,
    SOCKET_PATH,
    SOCKET_RECONNECT_ATTEMPTS,
    SOCKET_RECONNECT_WINDOW,
    SOCKET_RETRY_INTERVAL,
    USER_AGENT,
)
from .errors import BackendRateLimitError
from .events import EventType, RealtimeEvent, translate_push
from .sanitize import mask_identifier, redact_text

if TYPE_CHECKING:
    from .api import SimpliSafeClient

_LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[RealtimeEvent], None]
SleepCallable = Callable[[float], Awaitable[Any]]

SERVER_DISCONNECT_REASONS = frozenset({"io server disconnect", "server disconnect"})


class ChannelState(StrEnum):
    """Lifecycle of the push connection."""

    NO_SOCKET = "no_socket"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ABANDONED = "abandoned"


def _is_not_authorized(data: Any) -> bool:
    """Return True when a socket error payload reports an auth rejection."""

    if isinstance(data, Mapping):
        data = data.get("message")
    return "not authorized" in str(data or "").lower()


class EventChannel:
    """Own the single Socket.IO connection of a client and normalise its events.

    Only one callback is attached at a time; subscribing again replaces it.
    """

    def __init__(
        self,
        client: SimpliSafeClient,
        *,
        session: aiohttp.ClientSession | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialise the channel without opening a connection."""
        self._client = client
        self._session = session
        self._loop = loop or asyncio.get_running_loop()
        self._sio: socketio.AsyncClient | None = None
        self._namespace: str | None = None
        self._callback: EventCallback | None = None
        self._state = ChannelState.NO_SOCKET
        self._connect_task: asyncio.Task[None] | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._close_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ChannelState:
        """Return the current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Return True when the socket reports an open connection."""
        return self._sio is not None and bool(getattr(self._sio, "connected", False))

    @property
    def has_socket(self) -> bool:
        """Return True while a socket instance is owned by the channel."""
        return self._sio is not None

    async def subscribe(self, callback: EventCallback) -> None:
        """Attach ``callback`` and open the socket if none exists.

        Raises:
            BackendRateLimitError: The rate-limit guard is blocking, or the
                user id lookup needed for the socket was throttled.
        """

        if self._client.rate_limit.should_block():
            self._state = ChannelState.ABANDONED
            raise BackendRateLimitError("Event subscription blocked (rate limited)")

        self._callback = callback
        if self._sio is not None:
            self._attach(self._sio)
            return

        try:
            user_id = await self._client.get_user_id()
        except BackendRateLimitError:
            self._state = ChannelState.ABANDONED
            raise
        except Exception as err:  # noqa: BLE001 - normalised into CONNECTION_LOST
            _LOGGER.debug("WS: user lookup failed: %s", err)
            self._state = ChannelState.NO_SOCKET
            self._deliver(RealtimeEvent(EventType.CONNECTION_LOST))
            return

        if self._sio is not None:
            # Another subscriber opened the socket while we were resolving.
            self._attach(self._sio)
            return

        self._namespace = SOCKET_NAMESPACE_FMT.format(user_id=user_id)
        sio = self._create_socket()
        self._sio = sio
        self._state = ChannelState.CONNECTING
        self._attach(sio)
        self._connect_task = self._loop.create_task(self._connect(sio))

    def unsubscribe(self) -> None:
        """Detach the callback and close the socket."""

        self._callback = None
        self._close_socket()
        self._state = ChannelState.NO_SOCKET

    async def async_shutdown(self) -> None:
        """Close the socket and wait for the disconnect to finish."""

        self.unsubscribe()
        tasks = list(self._close_tasks)
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Socket lifecycle
    # ------------------------------------------------------------------
    def _create_socket(self) -> socketio.AsyncClient:
        """Build the Socket.IO client for this account."""

        http_session = (
            self._session
            if isinstance(self._session, aiohttp.ClientSession)
            else None
        )
        return socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=SOCKET_RECONNECT_ATTEMPTS,
            reconnection_delay=SOCKET_RETRY_INTERVAL,
            logger=_LOGGER.getChild("socketio"),
            engineio_logger=_LOGGER.getChild("engineio"),
            http_session=http_session,
        )

    def _socket_url(self) -> str:
        """Return the authenticated Socket.IO URL."""

        query = urlencode(
            {"ns": self._namespace, "accessToken": self._client.auth.access_token}
        )
        return f"{SOCKET_BASE}?{query}"

    async def _connect(self, sio: socketio.AsyncClient) -> None:
        """Open the connection, normalising failures into CONNECTION_LOST."""

        url = self._socket_url()
        _LOGGER.debug("WS: connecting to %s", redact_text(url))
        try:
            await sio.connect(
                url,
                namespaces=[self._namespace],
                socketio_path=SOCKET_PATH,
                transports=["websocket", "polling"],
                headers={"User-Agent": USER_AGENT},
            )
        except asyncio.CancelledError:
            raise
        except Exception as err:  # noqa: BLE001 - normalised into CONNECTION_LOST
            if sio is not self._sio:
                return
            _LOGGER.debug("WS: connect failed (%s: %s)", type(err).__name__, err)
            if _is_not_authorized(err):
                self._client.rate_limit.mark_blocked()
            self._connection_lost("connect failed")

    def _attach(self, sio: socketio.AsyncClient) -> None:
        """Register lifecycle and push handlers, replacing earlier ones."""

        namespace = self._namespace

        def _on_connect(*_: Any) -> None:
            if sio is not self._sio:
                return
            _LOGGER.debug("WS: connected")
            self._cancel_watchdog()
            self._state = ChannelState.CONNECTED
            self._deliver(RealtimeEvent(EventType.CONNECTED))

        def _on_disconnect(reason: Any = None, *_: Any) -> None:
            if sio is not self._sio:
                return
            _LOGGER.debug("WS: disconnect reason: %s", reason)
            if str(reason or "") in SERVER_DISCONNECT_REASONS:
                self._connection_lost("server disconnect")
                return
            self._state = ChannelState.RECONNECTING
            self._arm_watchdog()
            self._deliver(RealtimeEvent(EventType.DISCONNECT))

        def _on_connect_error(data: Any = None, *_: Any) -> None:
            if sio is not self._sio:
                return
            _LOGGER.debug("WS: connect_error payload: %s", redact_text(data))
            if _is_not_authorized(data):
                self._client.rate_limit.mark_blocked()
            self._connection_lost("connect_error")

        def _on_event(data: Any = None, *_: Any) -> None:
            if sio is not self._sio:
                return
            if isinstance(data, Mapping):
                self._handle_push(data)
            else:
                _LOGGER.debug("WS: ignoring non-mapping push: %r", data)

        sio.on("connect", handler=_on_connect, namespace=namespace)
        sio.on("disconnect", handler=_on_disconnect, namespace=namespace)
        sio.on("connect_error", handler=_on_connect_error, namespace=namespace)
        sio.on("event", handler=_on_event, namespace=namespace)

    def _arm_watchdog(self) -> None:
        """Treat a transport drop as lost if it does not recover in time."""

        self._cancel_watchdog()
        self._watchdog = self._loop.call_later(
            SOCKET_RECONNECT_WINDOW, self._connection_lost, "reconnect failed"
        )

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _connection_lost(self, reason: str) -> None:
        """Close the socket, then report CONNECTION_LOST."""

        _LOGGER.debug("WS: connection lost (%s)", reason)
        self._close_socket()
        self._state = ChannelState.NO_SOCKET
        self._deliver(RealtimeEvent(EventType.CONNECTION_LOST))

    def _close_socket(self) -> None:
        """Forget the current socket and disconnect it in the background."""

        self._cancel_watchdog()
        sio, self._sio = self._sio, None
        connect_task, self._connect_task = self._connect_task, None
        if (
            connect_task is not None
            and not connect_task.done()
            and connect_task is not asyncio.current_task()
        ):
            connect_task.cancel()
        if sio is None:
            return
        task = self._loop.create_task(self._disconnect(sio))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

    async def _disconnect(self, sio: socketio.AsyncClient) -> None:
        try:
            await sio.disconnect()
        except Exception:  # noqa: BLE001 - socket already gone
            _LOGGER.debug("WS: disconnect failed", exc_info=True)

    # ------------------------------------------------------------------
    # Payload handling
    # ------------------------------------------------------------------
    def _handle_push(self, data: Mapping[str, Any]) -> None:
        """Translate a push for this account and deliver it."""

        sub_id = self._client.subscription_id
        if sub_id is None or str(data.get("sid")) != str(sub_id):
            _LOGGER.debug(
                "WS: ignoring push for subscription %s", mask_identifier(data.get("sid"))
            )
            return
        event = translate_push(data)
        if event is None:
            return
        if event.event_type is None:
            _LOGGER.debug(
                "WS: unknown event cid=%s type=%s",
                data.get("eventCid"),
                data.get("eventType"),
            )
        self._deliver(event)
        if event.arms_lockout:
            self._client.sensor_lockout.arm()

    def _deliver(self, event: RealtimeEvent) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            callback(event)
        except Exception:  # pragma: no cover - subscriber bug
            _LOGGER.exception("WS: event callback failed for %s", event.event_type)


class EventListener:
    """Keep an event subscription alive, re-subscribing after losses.

    A plain connection loss waits ``retry_interval`` before the next attempt.
    A throttled subscribe waits ``retry_interval * 2**failures`` (capped); the
    failure count resets whenever the channel reports CONNECTED.
    """

    def __init__(
        self,
        channel: EventChannel,
        callback: EventCallback,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        retry_interval: float = SOCKET_RETRY_INTERVAL,
        max_interval: float = RATE_LIMIT_MAX_INTERVAL,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        """Initialise the listener; call :meth:`start` to begin."""
        self._channel = channel
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._retry_interval = retry_interval
        self._max_interval = max_interval
        self._sleep = sleep
        self._lost = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self.failure_count = 0

    @property
    def state(self) -> ChannelState:
        """Return the channel state observed by this listener."""
        return self._channel.state

    def is_running(self) -> bool:
        """Return True while the supervisor task is active."""
        return bool(self._task and not self._task.done())

    def start(self) -> asyncio.Task[None]:
        """Start the supervisor task."""

        if self._task and not self._task.done():
            return self._task
        self._closing = False
        self._task = self._loop.create_task(self._runner())
        return self._task

    async def stop(self) -> None:
        """Stop re-subscribing and close the channel."""

        self._closing = True
        self._lost.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._channel.unsubscribe()

    def reconnect_delay(self, *, rate_limited: bool) -> float:
        """Return the wait before the next attempt and advance the backoff."""

        if not rate_limited:
            return self._retry_interval
        delay = min(self._retry_interval * 2**self.failure_count, self._max_interval)
        self.failure_count += 1
        return delay

    def _on_event(self, event: RealtimeEvent) -> None:
        if event.event_type is EventType.CONNECTED:
            self.failure_count = 0
        elif event.event_type is EventType.CONNECTION_LOST:
            self._lost.set()
        self._callback(event)

    async def _runner(self) -> None:
        """Subscribe, wait for loss, back off, repeat until stopped."""

        while not self._closing:
            self._lost.clear()
            try:
                await self._channel.subscribe(self._on_event)
            except BackendRateLimitError as err:
                delay = self.reconnect_delay(rate_limited=True)
                _LOGGER.debug(
                    "WS: subscribe rate limited (%s); retrying in %.0fs", err, delay
                )
                await self._sleep(delay)
                continue
            await self._lost.wait()
            if self._closing:
                break
            delay = self.reconnect_delay(rate_limited=False)
            if self.failure_count == 0:
                _LOGGER.debug(
                    "WS: connection lost; reconnecting in %.0fs", delay
                )
            await self._sleep(delay)


__all__ = [
    "ChannelState",
    "EventCallback",
    "EventChannel",
    "EventListener",
    "SERVER_DISCONNECT_REASONS",
]
