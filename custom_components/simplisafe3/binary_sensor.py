"""Binary sensor entities for SimpliSafe 3 entry sensors."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
from typing import Any

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.core import callback
from homeassistant.helpers.device_registry import DeviceInfo

from .api import SimpliSafeClient, SimpliSafeError
from .const import DOMAIN, SENSOR_TYPES
from .runtime import require_runtime

_LOGGER = logging.getLogger(__name__)


def iter_entry_sensors(
    sensors: Iterable[Mapping[str, Any]],
) -> Iterable[Mapping[str, Any]]:
    """Yield entry sensors that carry a serial."""

    for sensor in sensors:
        if not isinstance(sensor, Mapping):
            continue
        if sensor.get("type") != SENSOR_TYPES["ENTRY_SENSOR"]:
            continue
        if not sensor.get("serial"):
            _LOGGER.debug("Skipping entry sensor without serial: %s", sensor)
            continue
        yield sensor


async def async_setup_entry(hass, entry, async_add_entities):
    """Set up entry sensors for a config entry."""
    runtime = require_runtime(hass, entry.entry_id)
    client = runtime.client
    try:
        sensors = await client.get_sensors()
    except SimpliSafeError as err:
        _LOGGER.warning("Could not list SimpliSafe sensors: %s", err)
        return

    entities = [
        SimpliSafeEntrySensor(client, runtime.subscription_id, sensor)
        for sensor in iter_entry_sensors(sensors)
    ]
    if entities:
        _LOGGER.debug("Adding %d SimpliSafe entry sensors", len(entities))
    async_add_entities(entities)


class SimpliSafeEntrySensor(BinarySensorEntity):
    """Door/window contact fed by the recurring sensor refresh."""

    _attr_has_entity_name = True
    _attr_name = None
    _attr_should_poll = False
    _attr_device_class = BinarySensorDeviceClass.OPENING

    def __init__(
        self,
        client: SimpliSafeClient,
        subscription_id: str,
        sensor: Mapping[str, Any],
    ) -> None:
        """Initialise the sensor from its first listing."""
        self._client = client
        self._serial = str(sensor["serial"])
        self._attr_unique_id = f"{subscription_id}_{self._serial}"
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, self._serial)},
            manufacturer="SimpliSafe",
            model="Entry Sensor",
            name=str(sensor.get("name") or f"Entry Sensor {self._serial}"),
            via_device=(DOMAIN, str(subscription_id)),
        )
        self._apply(sensor)

    @property
    def serial(self) -> str:
        """Return the sensor serial."""
        return self._serial

    async def async_added_to_hass(self) -> None:
        """Register for refreshed sensor data."""
        await super().async_added_to_hass()
        self._client.subscribe_to_sensor(self._serial, self._handle_sensor)

    async def async_will_remove_from_hass(self) -> None:
        """Stop receiving refreshed sensor data."""
        self._client.unsubscribe_from_sensor(self._serial)
        await super().async_will_remove_from_hass()

    @callback
    def _handle_sensor(self, sensor: Mapping[str, Any]) -> None:
        self._apply(sensor)
        self.async_write_ha_state()

    def _apply(self, sensor: Mapping[str, Any]) -> None:
        status = sensor.get("status") or {}
        self._attr_is_on = bool(status.get("triggered"))
