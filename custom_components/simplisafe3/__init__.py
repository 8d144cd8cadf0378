"""Home Assistant entry point for the SimpliSafe 3 integration."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EVENT_HOMEASSISTANT_STOP
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed, ConfigEntryNotReady
from homeassistant.helpers import aiohttp_client
from homeassistant.helpers.dispatcher import async_dispatcher_send
from homeassistant.loader import async_get_integration

from .api import (
    BackendRateLimitError,
    BackendRequestError,
    NoSubscriptionError,
    SimpliSafeClient,
    SimpliSafeError,
    UpstreamFormatError,
)
from .auth import AuthRefreshError, SimpliSafeAuth, TokenData
from .const import (
    CONF_ACCESS_TOKEN,
    CONF_ACCOUNT_NUMBER,
    CONF_DEBUG,
    CONF_REFRESH_TOKEN,
    CONF_SENSOR_REFRESH,
    DEFAULT_SENSOR_REFRESH,
    DOMAIN,
    MAX_SENSOR_REFRESH,
    MIN_SENSOR_REFRESH,
    signal_events,
)
from .events import RealtimeEvent
from .runtime import EntryRuntime
from .sanitize import mask_identifier

_LOGGER = logging.getLogger(__name__)

PLATFORMS = ["alarm_control_panel", "binary_sensor"]


async def async_get_integration_version(hass: HomeAssistant) -> str:
    """Return the installed integration version string."""

    integration = await async_get_integration(hass, DOMAIN)
    return integration.version or "unknown"


def sensor_refresh_interval(options: Mapping[str, Any]) -> int:
    """Return the configured sensor refresh interval clamped to its bounds."""

    try:
        value = int(options.get(CONF_SENSOR_REFRESH, DEFAULT_SENSOR_REFRESH))
    except (TypeError, ValueError):
        value = DEFAULT_SENSOR_REFRESH
    return max(MIN_SENSOR_REFRESH, min(MAX_SENSOR_REFRESH, value))


def create_client(
    hass: HomeAssistant,
    refresh_token: str,
    *,
    access_token: str | None = None,
    account_number: str | None = None,
    options: Mapping[str, Any] | None = None,
) -> SimpliSafeClient:
    """Build an auth handler and client bound to HA's shared session."""

    options = options or {}
    session = aiohttp_client.async_get_clientsession(hass)
    auth = SimpliSafeAuth(session, refresh_token, access_token=access_token)
    return SimpliSafeClient(
        session,
        auth,
        account_number=account_number,
        sensor_refresh_interval=sensor_refresh_interval(options),
        debug=bool(options.get(CONF_DEBUG, False)),
    )


async def async_validate_refresh_token(
    hass: HomeAssistant, refresh_token: str, account_number: str | None = None
) -> tuple[TokenData, list[Mapping[str, Any]]]:
    """Refresh credentials and list the matching monitoring plans."""

    client = create_client(hass, refresh_token, account_number=account_number)
    try:
        tokens = await client.auth.refresh_credentials()
        subscriptions = await client.get_subscriptions()
    finally:
        await client.async_shutdown()
    return tokens, subscriptions


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up the SimpliSafe 3 integration for a config entry."""

    version = await async_get_integration_version(hass)
    debug = bool(entry.options.get(CONF_DEBUG, False))
    client = create_client(
        hass,
        entry.data[CONF_REFRESH_TOKEN],
        access_token=entry.data.get(CONF_ACCESS_TOKEN),
        account_number=entry.data.get(CONF_ACCOUNT_NUMBER) or None,
        options=entry.options,
    )
    auth = client.auth

    @callback
    def _persist_tokens(tokens: TokenData) -> None:
        """Store rotated tokens so restarts keep a valid refresh token."""

        hass.config_entries.async_update_entry(
            entry,
            data={
                **entry.data,
                CONF_REFRESH_TOKEN: tokens.refresh_token,
                CONF_ACCESS_TOKEN: tokens.access_token,
            },
        )

    remove_token_listener = auth.add_token_listener(_persist_tokens)

    try:
        if not auth.has_access_token:
            await auth.refresh_credentials()
        subscription = await client.get_subscription()
    except AuthRefreshError as err:
        remove_token_listener()
        await client.async_shutdown()
        if err.status is None:
            raise ConfigEntryNotReady from err
        raise ConfigEntryAuthFailed from err
    except (
        BackendRateLimitError,
        BackendRequestError,
        NoSubscriptionError,
        UpstreamFormatError,
    ) as err:
        remove_token_listener()
        await client.async_shutdown()
        _LOGGER.info("SimpliSafe setup deferred: %s", err)
        raise ConfigEntryNotReady from err

    subscription_id = client.subscription_id or str(subscription.get("sid", ""))
    try:
        locks = await client.get_locks()
    except SimpliSafeError as err:
        _LOGGER.debug("Lock probe failed; refresh lockout stays disabled: %s", err)
        locks = []

    @callback
    def _on_event(event: RealtimeEvent) -> None:
        """Fan realtime events out to entities."""

        if client.debug:
            _LOGGER.debug("Event %s for %s", event.event_type, entry.entry_id)
        async_dispatcher_send(hass, signal_events(entry.entry_id), event)

    runtime = EntryRuntime(
        client=client,
        auth=auth,
        config_entry=entry,
        subscription_id=subscription_id,
        subscription=dict(subscription),
        locks=list(locks),
        debug=debug,
        version=version,
    )
    runtime.unsub_callbacks.append(remove_token_listener)
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = runtime

    async def _async_handle_hass_stop(_event: Any) -> None:
        """Stop background activity gracefully when Home Assistant stops."""

        await runtime.async_shutdown()

    entry.async_on_unload(
        hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STOP, _async_handle_hass_stop)
    )
    entry.async_on_unload(entry.add_update_listener(async_update_entry_options))

    runtime.listener = client.start_event_listener(_on_event)

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    _LOGGER.info(
        "SimpliSafe setup complete (v%s) for subscription %s",
        version,
        mask_identifier(subscription_id),
    )
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry for SimpliSafe 3."""

    domain_data = hass.data.get(DOMAIN)
    runtime = domain_data.get(entry.entry_id) if domain_data else None
    if runtime is None:
        return True

    ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    await runtime.async_shutdown()

    if ok and domain_data:
        domain_data.pop(entry.entry_id, None)
    return ok


async def async_update_entry_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Apply option changes; token rotations alone do nothing."""

    domain_data = hass.data.get(DOMAIN) or {}
    runtime: EntryRuntime | None = domain_data.get(entry.entry_id)
    if runtime is None:
        return

    debug = bool(entry.options.get(CONF_DEBUG, False))
    if debug != runtime.debug:
        runtime.debug = debug
        runtime.client.debug = debug
        _LOGGER.debug("SimpliSafe debug logging %s", "enabled" if debug else "disabled")

    if sensor_refresh_interval(entry.options) != runtime.client.poller.interval:
        await hass.config_entries.async_reload(entry.entry_id)
