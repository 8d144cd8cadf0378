"""Async client for the SimpliSafe 3 cloud (HA-safe)."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from functools import partial
import logging
import time
from typing import Any, TypeVar

import aiohttp

from .auth import AuthRefreshError, SimpliSafeAuth
from .cache import RequestCache
from .const import (
    ACTIVE_PLAN_STATUSES,
    ALARM_STATE_PATH_FMT,
    ALARM_STATES,
    API_BASE,
    AUTH_CHECK_PATH,
    DEFAULT_SENSOR_REFRESH,
    EVENTS_PATH_FMT,
    LOCK_STATE_PATH_FMT,
    LOCKS_PATH_FMT,
    LOGIN_INFO_PATH_FMT,
    SENSOR_CACHE_TTL,
    SENSORS_PATH_FMT,
    SUBSCRIPTION_CACHE_TTL,
    SUBSCRIPTION_PATH_FMT,
    SUBSCRIPTIONS_PATH_FMT,
    TARGET_STATE_MAX_RETRIES,
    TARGET_STATE_RETRY_DELAY,
    TRANSIENT_WRITE_STATUSES,
    USER_AGENT,
    VALID_ALARM_STATES,
    VALID_LOCK_STATES,
)
from .errors import (
    BackendRateLimitError,
    BackendRequestError,
    InvalidTargetStateError,
    NoSubscriptionError,
    SimpliSafeError,
    TransientWriteError,
    UpstreamFormatError,
)
from .sanitize import mask_identifier, redact_text
from .sensor_poller import SensorCallback, SensorPoller, SensorRefreshLockout
from .throttle import MonotonicCallable, RateLimitGuard
from .ws_client import EventCallback, EventChannel, EventListener

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

SENSORS_CACHE_KEY = "sensors"
LOCKS_CACHE_KEY = "locks"
USER_ID_LOOKUP_KEY = "user_id"
SUBSCRIPTIONS_LOOKUP_KEY = "subscriptions"


async def async_retry_transient(
    operation: Callable[[], Awaitable[_T]],
    *,
    max_retries: int = TARGET_STATE_MAX_RETRIES,
    delay: float = TARGET_STATE_RETRY_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> _T:
    """Run ``operation``, retrying on 409/504 up to ``max_retries`` times.

    The retry budget belongs to this call alone; the error from the final
    failed attempt is raised unchanged.
    """

    retries = 0
    while True:
        try:
            return await operation()
        except TransientWriteError as err:
            if retries >= max_retries:
                raise
            retries += 1
            _LOGGER.debug(
                "Transient write failure (%s); retry %d/%d in %.1fs",
                err.status,
                retries,
                max_retries,
                delay,
            )
            await sleep(delay)


def _system(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return ``subscription.location.system`` or raise UpstreamFormatError."""

    location = subscription.get("location")
    system = location.get("system") if isinstance(location, Mapping) else None
    if not isinstance(system, Mapping):
        raise UpstreamFormatError("Subscription format not understood")
    return system


def _unwrap(data: Any, key: str) -> Any:
    """Return ``data[key]`` from a response wrapper or raise UpstreamFormatError."""

    if not isinstance(data, Mapping) or key not in data:
        raise UpstreamFormatError(f"Response is missing '{key}'")
    return data[key]


class SimpliSafeClient:
    """Account-scoped client: request pipeline, caches, push channel and poller.

    One instance exists per account; :meth:`async_shutdown` tears down every
    timer and connection it owns.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth: SimpliSafeAuth,
        *,
        api_base: str = API_BASE,
        account_number: str | None = None,
        sensor_refresh_interval: float = DEFAULT_SENSOR_REFRESH,
        debug: bool = False,
        loop: asyncio.AbstractEventLoop | None = None,
        monotonic: MonotonicCallable = time.monotonic,
    ) -> None:
        """Initialise the client; nothing touches the network until used."""
        self._session = session
        self._auth = auth
        self._api_base = api_base.rstrip("/") if api_base else API_BASE
        self._account_number = account_number or None
        self._loop = loop or asyncio.get_running_loop()
        self._guard = RateLimitGuard(monotonic=monotonic)
        self._subscription_cache = RequestCache(
            ttl=SUBSCRIPTION_CACHE_TTL, loop=self._loop
        )
        self._device_cache = RequestCache(ttl=SENSOR_CACHE_TTL, loop=self._loop)
        self._lookup_cache = RequestCache(ttl=0, loop=self._loop)
        self._user_id: str | None = None
        self._subscription_id: str | None = None
        self.sensor_lockout = SensorRefreshLockout(loop=self._loop)
        self._poller = SensorPoller(
            self._poll_sensors,
            loop=self._loop,
            interval=sensor_refresh_interval,
            lockout=self.sensor_lockout,
            debug=debug,
        )
        self._channel = EventChannel(self, session=session, loop=self._loop)
        self._listeners: list[EventListener] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def auth(self) -> SimpliSafeAuth:
        """Return the credential holder."""
        return self._auth

    @property
    def api_base(self) -> str:
        """Return the REST base URL."""
        return self._api_base

    @property
    def rate_limit(self) -> RateLimitGuard:
        """Return the guard gating every outbound call."""
        return self._guard

    @property
    def user_id(self) -> str | None:
        """Return the resolved user id, if known."""
        return self._user_id

    @property
    def subscription_id(self) -> str | None:
        """Return the selected subscription id, if known."""
        return self._subscription_id

    @property
    def account_number(self) -> str | None:
        """Return the default account number, if configured."""
        return self._account_number

    @property
    def poller(self) -> SensorPoller:
        """Return the sensor poller."""
        return self._poller

    @property
    def channel(self) -> EventChannel:
        """Return the realtime event channel."""
        return self._channel

    @property
    def debug(self) -> bool:
        """Return True when verbose poll logging is forced on."""
        return self._poller.debug

    @debug.setter
    def debug(self, value: bool) -> None:
        self._poller.debug = bool(value)

    # ------------------------------------------------------------------
    # Request executor
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Perform an authenticated request and return the parsed body.

        A 401 refreshes credentials and retries once. A 403 (or a refresh
        rejected with 403) engages the rate-limit guard. Transport failures
        are reported as rate limiting. Errors are logged WITHOUT secrets.
        """

        if self._guard.should_block():
            raise BackendRateLimitError(
                f"Rate limited; retry in {self._guard.retry_in():.0f}s"
            )

        url = path if path.startswith("http") else f"{self._api_base}{path}"
        _LOGGER.debug("HTTP %s %s", method, url)

        for attempt in range(2):
            headers = {
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
                **self._auth.authorization_header(),
            }
            try:
                async with self._session.request(
                    method, url, headers=headers, params=params, json=json
                ) as resp:
                    status = resp.status
                    body = await self._read_body(resp)
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, TimeoutError) as err:
                _LOGGER.debug(
                    "Request %s %s failed (sanitized): %s",
                    method,
                    url,
                    redact_text(str(err)),
                )
                raise BackendRateLimitError(
                    f"Could not reach SimpliSafe: {type(err).__name__}"
                ) from err

            if status >= 400:
                _LOGGER.debug(
                    "HTTP error %s %s -> %s; body=%s",
                    method,
                    url,
                    status,
                    redact_text(str(body)),
                )
            else:
                _LOGGER.debug("HTTP %s -> %s", url, status)

            if status == 401 and attempt == 0:
                try:
                    await self._auth.refresh_credentials()
                except AuthRefreshError as err:
                    if err.status == 403:
                        self._guard.engage()
                        raise BackendRateLimitError(str(err)) from err
                    raise
                continue
            if status == 403:
                self._guard.engage()
                raise BackendRateLimitError(body)
            if status in TRANSIENT_WRITE_STATUSES:
                raise TransientWriteError(status, body)
            if status >= 400:
                raise BackendRequestError(status, body)

            self._guard.reset()
            return body

        raise SimpliSafeError("Request loop exhausted")  # pragma: no cover

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        """Return JSON when possible, otherwise text."""

        ctype = resp.headers.get("Content-Type", "")
        body_text = await resp.text()
        if "application/json" in ctype or (body_text and body_text[:1] in ("{", "[")):
            try:
                return await resp.json(content_type=None)
            except ValueError:
                return body_text
        return body_text or None

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------
    async def get_user_id(self, *, force: bool = False) -> str:
        """Return the account user id, resolving it once."""

        if self._user_id is not None and not force:
            return self._user_id
        data = await self._lookup_cache.async_get(
            USER_ID_LOOKUP_KEY,
            partial(self._request, "GET", AUTH_CHECK_PATH),
            force_refresh=force,
        )
        user_id = data.get("userId") if isinstance(data, Mapping) else None
        if user_id in (None, ""):
            raise UpstreamFormatError("authCheck response has no userId")
        self._user_id = str(user_id)
        _LOGGER.debug("Resolved user id %s", mask_identifier(self._user_id))
        return self._user_id

    async def get_user_info(self) -> Mapping[str, Any]:
        """Return the ``loginInfo`` block for the account."""

        user_id = await self.get_user_id()
        data = await self._request(
            "GET", LOGIN_INFO_PATH_FMT.format(user_id=user_id)
        )
        return _unwrap(data, "loginInfo")

    async def get_subscriptions(self) -> list[Mapping[str, Any]]:
        """Return active monitoring plans, narrowed to the default account."""

        user_id = await self.get_user_id()
        data = await self._lookup_cache.async_get(
            (SUBSCRIPTIONS_LOOKUP_KEY, user_id),
            partial(
                self._request,
                "GET",
                SUBSCRIPTIONS_PATH_FMT.format(user_id=user_id),
                params={"activeOnly": "false"},
            ),
        )
        raw = _unwrap(data, "subscriptions")
        if not isinstance(raw, list):
            raise UpstreamFormatError("subscriptions is not a list")

        subs = [
            sub
            for sub in raw
            if isinstance(sub, Mapping) and sub.get("sStatus") in ACTIVE_PLAN_STATUSES
        ]
        if self._account_number:
            subs = [
                sub
                for sub in subs
                if str((sub.get("location") or {}).get("account"))
                == self._account_number
            ]
        if len(subs) == 1:
            self._subscription_id = str(subs[0].get("sid"))
        return subs

    async def get_subscription(
        self, sub_id: str | None = None, force_refresh: bool = False
    ) -> Mapping[str, Any]:
        """Return one subscription, sharing in-flight and recent fetches."""

        subscription_id = sub_id or self._subscription_id
        if not subscription_id:
            subs = await self.get_subscriptions()
            if not subs:
                raise NoSubscriptionError(
                    "No matching monitoring plans found. Check your account "
                    "and ensure you have an active plan."
                )
            if len(subs) > 1:
                accounts = ", ".join(
                    str((sub.get("location") or {}).get("account")) for sub in subs
                )
                raise NoSubscriptionError(
                    "Multiple plans found; choose an account number. "
                    f"The account numbers found were: {accounts}."
                )
            subscription_id = str(subs[0].get("sid"))

        subscription_id = str(subscription_id)
        data = await self._subscription_cache.async_get(
            subscription_id,
            partial(
                self._request,
                "GET",
                SUBSCRIPTION_PATH_FMT.format(sub_id=subscription_id),
            ),
            force_refresh=force_refresh,
        )
        return _unwrap(data, "subscription")

    def set_default_subscription(self, account_number: str) -> None:
        """Select the plan whose account number is ``account_number``."""

        if not account_number:
            raise ValueError("Account number not defined")
        account_number = str(account_number)
        if account_number != self._account_number:
            self._subscription_id = None
        self._account_number = account_number

    async def _ensure_subscription_id(self) -> str:
        if self._subscription_id is None:
            await self.get_subscription()
        if self._subscription_id is None:
            raise NoSubscriptionError("No subscription selected")
        return self._subscription_id

    # ------------------------------------------------------------------
    # Alarm
    # ------------------------------------------------------------------
    async def get_alarm_state(self, force_refresh: bool = False) -> str:
        """Return the alarm state, re-reading once if it is unrecognised."""

        state: Any = None
        for attempt in range(2):
            subscription = await self.get_subscription(
                force_refresh=force_refresh or attempt > 0
            )
            system = _system(subscription)
            if system.get("isAlarming"):
                return "ALARM"
            state = system.get("alarmState")
            if state in ALARM_STATES:
                return state
            _LOGGER.debug("Alarm state %r not understood; re-reading", state)
        raise UpstreamFormatError(f"Alarm state not understood: {state!r}")

    async def set_alarm_state(self, new_state: str) -> Any:
        """Arm or disarm the system; ``new_state`` is off, home or away.

        Raises:
            InvalidTargetStateError: ``new_state`` is not supported. Nothing is
                sent in that case.
        """

        state = str(new_state).lower()
        if state not in VALID_ALARM_STATES:
            raise InvalidTargetStateError(f"Invalid target state: {new_state!r}")
        sub_id = await self._ensure_subscription_id()
        data = await self._request(
            "POST", ALARM_STATE_PATH_FMT.format(sub_id=sub_id, state=state)
        )
        self.sensor_lockout.arm()
        return data

    async def get_events(
        self, params: Mapping[str, Any] | None = None
    ) -> list[Mapping[str, Any]]:
        """Return the recent event log, filtered by ``params``."""

        sub_id = await self._ensure_subscription_id()
        data = await self._request(
            "GET",
            EVENTS_PATH_FMT.format(sub_id=sub_id),
            params=dict(params) if params else None,
        )
        return _unwrap(data, "events")

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    async def get_sensors(
        self, force_update: bool = False, force_refresh: bool = False
    ) -> list[Mapping[str, Any]]:
        """Return the sensor list; ``force_update`` asks the base station."""

        sub_id = await self._ensure_subscription_id()
        data = await self._device_cache.async_get(
            SENSORS_CACHE_KEY,
            partial(
                self._request,
                "GET",
                SENSORS_PATH_FMT.format(sub_id=sub_id),
                params={"forceUpdate": "true" if force_update else "false"},
            ),
            force_refresh=force_refresh,
        )
        return _unwrap(data, "sensors")

    async def get_cameras(self, force_refresh: bool = False) -> list[Mapping[str, Any]]:
        """Return the cameras listed on the subscription."""

        system = _system(await self.get_subscription(force_refresh=force_refresh))
        cameras = system.get("cameras")
        if cameras is None:
            raise UpstreamFormatError("Subscription format not understood")
        return cameras

    async def get_locks(self, force_refresh: bool = False) -> list[Mapping[str, Any]]:
        """Return the door locks; enables the refresh lockout when any exist."""

        sub_id = await self._ensure_subscription_id()
        data = await self._device_cache.async_get(
            LOCKS_CACHE_KEY,
            partial(self._request, "GET", LOCKS_PATH_FMT.format(sub_id=sub_id)),
            force_refresh=force_refresh,
        )
        if not isinstance(data, list):
            raise UpstreamFormatError("Lock response is not a list")
        self.sensor_lockout.enabled = len(data) > 0
        return data

    async def set_lock_state(self, lock_id: str, new_state: str) -> Any:
        """Lock or unlock ``lock_id``; ``new_state`` is lock or unlock."""

        state = str(new_state).lower()
        if state not in VALID_LOCK_STATES:
            raise InvalidTargetStateError(f"Invalid target state: {new_state!r}")
        sub_id = await self._ensure_subscription_id()
        return await self._request(
            "POST",
            LOCK_STATE_PATH_FMT.format(sub_id=sub_id, lock_id=lock_id),
            json={"state": state},
        )

    # ------------------------------------------------------------------
    # Realtime events
    # ------------------------------------------------------------------
    async def subscribe_to_events(self, callback: EventCallback) -> None:
        """Attach ``callback`` to the push channel, opening it if needed."""

        await self._channel.subscribe(callback)

    def is_socket_connected(self) -> bool:
        """Return True while the push channel is connected."""

        return self._channel.connected

    def unsubscribe_from_events(self) -> None:
        """Detach the callback and close the push channel."""

        self._channel.unsubscribe()

    def start_event_listener(self, callback: EventCallback) -> EventListener:
        """Keep ``callback`` subscribed, re-subscribing after losses."""

        listener = EventListener(self._channel, callback, loop=self._loop)
        self._listeners.append(listener)
        listener.start()
        return listener

    # ------------------------------------------------------------------
    # Sensor polling
    # ------------------------------------------------------------------
    def subscribe_to_sensor(self, sensor_id: str, callback: SensorCallback) -> None:
        """Deliver refreshed data for ``sensor_id`` to ``callback``."""

        self._poller.subscribe(sensor_id, callback)

    def unsubscribe_from_sensor(self, sensor_id: str) -> None:
        """Stop delivering refreshed data for ``sensor_id``."""

        self._poller.unsubscribe(sensor_id)

    async def _poll_sensors(self) -> list[Mapping[str, Any]]:
        return await self.get_sensors(force_update=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def async_shutdown(self) -> None:
        """Stop listeners, close the socket and cancel every timer."""

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            await listener.stop()
        await self._channel.async_shutdown()
        await self._poller.async_shutdown()
        self._subscription_cache.clear()
        self._device_cache.clear()
        self._lookup_cache.clear()
        self.sensor_lockout.cancel()


__all__ = [
    "BackendRateLimitError",
    "BackendRequestError",
    "InvalidTargetStateError",
    "NoSubscriptionError",
    "SimpliSafeClient",
    "SimpliSafeError",
    "TransientWriteError",
    "UpstreamFormatError",
    "async_retry_transient",
]
