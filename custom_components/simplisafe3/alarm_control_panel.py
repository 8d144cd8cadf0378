"""Alarm control panel entity for a SimpliSafe 3 system."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from functools import partial
import logging
from typing import Any

from homeassistant.components.alarm_control_panel import (
    AlarmControlPanelEntity,
    AlarmControlPanelEntityFeature,
    AlarmControlPanelState,
)
from homeassistant.core import callback
from homeassistant.exceptions import HomeAssistantError
from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.dispatcher import async_dispatcher_connect
from homeassistant.helpers.event import async_call_later

from .api import SimpliSafeClient, SimpliSafeError, async_retry_transient
from .const import DOMAIN, SENSOR_TYPES, signal_events
from .events import EventType, RealtimeEvent
from .runtime import require_runtime

_LOGGER = logging.getLogger(__name__)

SS3_TO_HA_STATE: dict[str, AlarmControlPanelState] = {
    "OFF": AlarmControlPanelState.DISARMED,
    "HOME": AlarmControlPanelState.ARMED_HOME,
    "AWAY": AlarmControlPanelState.ARMED_AWAY,
    "HOME_COUNT": AlarmControlPanelState.ARMING,
    "AWAY_COUNT": AlarmControlPanelState.ARMING,
    "ALARM_COUNT": AlarmControlPanelState.PENDING,
    "ALARM": AlarmControlPanelState.TRIGGERED,
}

EVENT_TO_HA_STATE: dict[EventType, AlarmControlPanelState] = {
    EventType.ALARM_DISARM: AlarmControlPanelState.DISARMED,
    EventType.ALARM_CANCEL: AlarmControlPanelState.DISARMED,
    EventType.ALARM_OFF: AlarmControlPanelState.DISARMED,
    EventType.HOME_ARM: AlarmControlPanelState.ARMED_HOME,
    EventType.AWAY_ARM: AlarmControlPanelState.ARMED_AWAY,
    EventType.HOME_EXIT_DELAY: AlarmControlPanelState.ARMING,
    EventType.AWAY_EXIT_DELAY: AlarmControlPanelState.ARMING,
}

# Sources whose events reflect a change of the arming state itself.
STATE_CHANGING_SENSOR_TYPES = frozenset(
    SENSOR_TYPES[name] for name in ("APP", "KEYPAD", "KEYCHAIN", "DOORLOCK")
)

REACHABLE_CONN_TYPES = frozenset({"wifi", "cell"})


def state_from_event(event: RealtimeEvent) -> AlarmControlPanelState | None:
    """Return the panel state implied by ``event``, if any."""

    if event.event_type is EventType.ALARM_TRIGGER:
        return AlarmControlPanelState.TRIGGERED
    if event.event_type is None or event.sensor_type not in STATE_CHANGING_SENSOR_TYPES:
        return None
    return EVENT_TO_HA_STATE.get(event.event_type)


async def async_setup_entry(hass, entry, async_add_entities):
    """Set up the alarm panel for a config entry."""
    runtime = require_runtime(hass, entry.entry_id)
    async_add_entities(
        [
            SimpliSafeAlarmPanel(
                runtime.client,
                entry.entry_id,
                runtime.subscription_id,
                runtime.subscription,
            )
        ]
    )


class SimpliSafeAlarmPanel(AlarmControlPanelEntity):
    """Arm, disarm and follow a SimpliSafe 3 base station."""

    _attr_has_entity_name = True
    _attr_name = None
    _attr_should_poll = False
    _attr_code_arm_required = False
    _attr_supported_features = (
        AlarmControlPanelEntityFeature.ARM_HOME
        | AlarmControlPanelEntityFeature.ARM_AWAY
    )

    def __init__(
        self,
        client: SimpliSafeClient,
        entry_id: str,
        subscription_id: str,
        subscription: Mapping[str, Any],
    ) -> None:
        """Initialise the panel from the subscription fetched at setup."""
        self._client = client
        self._entry_id = entry_id
        self._subscription_id = str(subscription_id)
        self._attr_unique_id = f"{self._subscription_id}_alarm"
        location = subscription.get("location") or {}
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, self._subscription_id)},
            manufacturer="SimpliSafe",
            model="SimpliSafe 3",
            name=str(location.get("street1") or f"SimpliSafe {location.get('account', '')}").strip(),
        )
        self._attr_alarm_state = None
        self._reachable: bool | None = None
        self._conn_type: str | None = None
        self._exit_delay_unsub: Callable[[], None] | None = None
        self._update_reachability(subscription)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return base station connectivity details."""
        return {"reachable": self._reachable, "connection_type": self._conn_type}

    async def async_added_to_hass(self) -> None:
        """Subscribe to realtime events and read the initial state."""
        await super().async_added_to_hass()
        self.async_on_remove(
            async_dispatcher_connect(
                self.hass, signal_events(self._entry_id), self._handle_event
            )
        )
        await self.async_refresh_state()

    async def async_will_remove_from_hass(self) -> None:
        """Cancel a pending exit-delay refresh."""
        self._cancel_exit_delay()
        await super().async_will_remove_from_hass()

    async def async_alarm_disarm(self, code: str | None = None) -> None:
        """Disarm the system."""
        await self._async_set_state("off")

    async def async_alarm_arm_home(self, code: str | None = None) -> None:
        """Arm in home mode."""
        await self._async_set_state("home")

    async def async_alarm_arm_away(self, code: str | None = None) -> None:
        """Arm in away mode."""
        await self._async_set_state("away")

    async def async_refresh_state(self) -> None:
        """Read the alarm state and reachability from the cloud."""
        try:
            state = await self._client.get_alarm_state()
            subscription = await self._client.get_subscription()
        except SimpliSafeError as err:
            _LOGGER.error("An error occurred while refreshing alarm state: %s", err)
            self._attr_available = False
            self.async_write_ha_state()
            return

        self._attr_alarm_state = SS3_TO_HA_STATE.get(state)
        self._update_reachability(subscription)
        self._attr_available = True
        if self._client.debug:
            _LOGGER.debug("Updated alarm state for %s: %s", self.entity_id, state)
        self.async_write_ha_state()

    async def _async_set_state(self, target: str) -> None:
        """Send ``target`` with bounded retries on transient conflicts."""
        if self._client.debug:
            _LOGGER.debug("Setting alarm state to %s", target)
        try:
            data = await async_retry_transient(
                partial(self._client.set_alarm_state, target)
            )
        except SimpliSafeError as err:
            _LOGGER.error("Error while setting alarm state: %s", err)
            self._attr_available = False
            self.async_write_ha_state()
            raise HomeAssistantError(
                f"An error occurred while setting the alarm state: {err}"
            ) from err

        self._attr_available = True
        if isinstance(data, Mapping):
            exit_delay = data.get("exitDelay") or 0
            if data.get("state") == "OFF":
                self._attr_alarm_state = AlarmControlPanelState.DISARMED
            elif isinstance(exit_delay, (int, float)) and exit_delay > 0:
                self._attr_alarm_state = AlarmControlPanelState.ARMING
                self._cancel_exit_delay()
                self._exit_delay_unsub = async_call_later(
                    self.hass, exit_delay, self._exit_delay_elapsed
                )
        self.async_write_ha_state()

    @callback
    def _exit_delay_elapsed(self, _now: Any) -> None:
        self._exit_delay_unsub = None
        self.hass.async_create_task(self.async_refresh_state())

    def _cancel_exit_delay(self) -> None:
        if self._exit_delay_unsub is not None:
            self._exit_delay_unsub()
            self._exit_delay_unsub = None

    @callback
    def _handle_event(self, event: RealtimeEvent) -> None:
        """Apply a realtime event to the panel state."""
        if event.event_type is EventType.CONNECTED:
            # Pushes may have been missed while the channel was down.
            self.hass.async_create_task(self.async_refresh_state())
            return
        state = state_from_event(event)
        if state is None:
            if self._client.debug and event.event_type is not None:
                _LOGGER.debug("Alarm ignoring unhandled event: %s", event.event_type)
            return
        self._attr_alarm_state = state
        self.async_write_ha_state()

    def _update_reachability(self, subscription: Mapping[str, Any]) -> None:
        system = (subscription.get("location") or {}).get("system") or {}
        conn_type = system.get("connType")
        if conn_type is None:
            return
        self._conn_type = str(conn_type)
        self._reachable = self._conn_type in REACHABLE_CONN_TYPES
