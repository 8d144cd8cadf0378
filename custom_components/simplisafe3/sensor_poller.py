"""Recurring sensor refresh with lockout and quiet-mode error batching."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass
import logging
from typing import Any

from .const import (
    DEFAULT_SENSOR_REFRESH,
    ERROR_SUPPRESSION_WINDOW,
    SENSOR_REFRESH_LOCKOUT,
)
from .errors import BackendRateLimitError

_LOGGER = logging.getLogger(__name__)

SensorCallback = Callable[[Mapping[str, Any]], None]
SensorFetcher = Callable[[], Awaitable[Iterable[Mapping[str, Any]]]]


@dataclass(slots=True)
class SensorSubscription:
    """A subscriber interested in one sensor serial."""

    sensor_id: str
    callback: SensorCallback


class SensorRefreshLockout:
    """Debounced window during which sensor refreshes are skipped.

    Only meaningful once lock hardware has been seen on the account; until
    ``enabled`` is set, arming is a no-op.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        duration: float = SENSOR_REFRESH_LOCKOUT,
    ) -> None:
        """Initialise an inactive lockout."""
        self._loop = loop or asyncio.get_running_loop()
        self._duration = duration
        self._handle: asyncio.TimerHandle | None = None
        self.enabled = False

    @property
    def active(self) -> bool:
        """Return True while the lockout window is open."""
        return self._handle is not None

    def arm(self) -> bool:
        """Start or restart the lockout window; return True if armed."""

        if not self.enabled:
            return False
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._loop.call_later(self._duration, self._expire)
        _LOGGER.debug("Sensor refresh lockout armed for %.0fs", self._duration)
        return True

    def cancel(self) -> None:
        """Close the window immediately."""

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _expire(self) -> None:
        self._handle = None
        _LOGGER.debug("Sensor refresh lockout expired")


class ErrorSuppressionWindow:
    """Count errors for a fixed window and report them once when it closes."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        duration: float = ERROR_SUPPRESSION_WINDOW,
        logger: logging.Logger = _LOGGER,
        verbose: Callable[[], bool] | None = None,
    ) -> None:
        """Initialise a closed window.

        When ``verbose`` returns True at flush time the summary is dropped.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._duration = duration
        self._logger = logger
        self._verbose = verbose
        self._handle: asyncio.TimerHandle | None = None
        self.count = 0

    @property
    def is_open(self) -> bool:
        """Return True while errors are being counted."""
        return self._handle is not None

    def record(self) -> None:
        """Count one error, opening the window if it is closed."""

        if self._handle is None:
            self.count = 1
            self._handle = self._loop.call_later(self._duration, self._flush)
        else:
            self.count += 1

    def cancel(self) -> None:
        """Drop the window without reporting."""

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.count = 0

    def _flush(self) -> None:
        self._handle = None
        count, self.count = self.count, 0
        if count <= 0:
            return
        if self._verbose is not None and self._verbose():
            return
        self._logger.warning(
            "%d error%s received from the SimpliSafe API while refreshing "
            "sensors in the last %d minutes. Enable debug logging for "
            "detailed output.",
            count,
            "s were" if count > 1 else " was",
            int(self._duration // 60),
        )


class SensorPoller:
    """Refresh sensors on a timer and fan results out to subscribers.

    The timer only exists while at least one subscriber is registered.
    """

    def __init__(
        self,
        fetch_sensors: SensorFetcher,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        interval: float = DEFAULT_SENSOR_REFRESH,
        lockout: SensorRefreshLockout | None = None,
        debug: bool = False,
    ) -> None:
        """Initialise the poller without starting the timer."""
        self._fetch = fetch_sensors
        self._loop = loop or asyncio.get_running_loop()
        self._interval = float(interval)
        self.lockout = lockout or SensorRefreshLockout(loop=self._loop)
        self.debug = debug
        self._subscriptions: list[SensorSubscription] = []
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[bool]] = set()
        self._errors = ErrorSuppressionWindow(
            loop=self._loop, verbose=lambda: self.verbose
        )

    @property
    def interval(self) -> float:
        """Return the refresh interval in seconds."""
        return self._interval

    @property
    def is_running(self) -> bool:
        """Return True while the refresh timer is scheduled."""
        return self._handle is not None

    @property
    def subscriptions(self) -> tuple[SensorSubscription, ...]:
        """Return the registered subscribers in registration order."""
        return tuple(self._subscriptions)

    @property
    def suppressed_errors(self) -> ErrorSuppressionWindow:
        """Return the quiet-mode error window."""
        return self._errors

    @property
    def verbose(self) -> bool:
        """Return True when errors should be logged as they happen."""
        return self.debug or _LOGGER.isEnabledFor(logging.DEBUG)

    def subscribe(self, sensor_id: str, callback: SensorCallback) -> None:
        """Register ``callback`` for sensor ``sensor_id`` and start the timer."""

        self._subscriptions.append(SensorSubscription(str(sensor_id), callback))
        if self._handle is None:
            self._schedule()

    def unsubscribe(self, sensor_id: str) -> None:
        """Remove every subscriber for ``sensor_id``; stop the timer when empty."""

        sensor_id = str(sensor_id)
        self._subscriptions = [
            sub for sub in self._subscriptions if sub.sensor_id != sensor_id
        ]
        if not self._subscriptions:
            self._cancel_timer()

    async def async_shutdown(self) -> None:
        """Stop the timer and cancel pending refreshes."""

        self._subscriptions.clear()
        self._cancel_timer()
        self.lockout.cancel()
        self._errors.cancel()
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self._interval, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_timer(self) -> None:
        """Re-arm the timer and run one refresh in the background."""

        self._handle = None
        if not self._subscriptions:
            return
        self._schedule()
        task = self._loop.create_task(self.async_refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def async_refresh(self) -> bool:
        """Run one refresh tick; return True when sensors were delivered."""

        if not self._subscriptions:
            return False
        if self.lockout.active:
            if self.verbose:
                _LOGGER.debug("Sensor refresh lockout in effect, refresh blocked.")
            return False

        try:
            sensors = await self._fetch()
        except asyncio.CancelledError:
            raise
        except BackendRateLimitError as err:
            _LOGGER.debug("Sensor refresh skipped while rate limited: %s", err)
            return False
        except Exception as err:  # noqa: BLE001 - batched in quiet mode
            if self.verbose:
                _LOGGER.error(
                    "Sensor refresh received an error from the SimpliSafe API: %s",
                    err,
                )
            else:
                self._errors.record()
            return False

        for sensor in sensors:
            serial = str(sensor.get("serial", ""))
            for sub in [s for s in self._subscriptions if s.sensor_id == serial]:
                try:
                    sub.callback(sensor)
                except Exception:  # pragma: no cover - subscriber bug
                    _LOGGER.exception("Sensor subscriber for %s failed", serial)
        return True


__all__ = [
    "ErrorSuppressionWindow",
    "SensorCallback",
    "SensorFetcher",
    "SensorPoller",
    "SensorRefreshLockout",
    "SensorSubscription",
]
