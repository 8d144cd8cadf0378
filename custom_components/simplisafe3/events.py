"""Normalised realtime event taxonomy and push payload translation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final


class EventType(StrEnum):
    """Normalised categories delivered to event subscribers."""

    ALARM_TRIGGER = "ALARM_TRIGGER"
    ALARM_OFF = "ALARM_OFF"
    ALARM_DISARM = "ALARM_DISARM"
    ALARM_CANCEL = "ALARM_CANCEL"
    HOME_EXIT_DELAY = "HOME_EXIT_DELAY"
    HOME_ARM = "HOME_ARM"
    AWAY_EXIT_DELAY = "AWAY_EXIT_DELAY"
    AWAY_ARM = "AWAY_ARM"
    MOTION = "MOTION"
    ENTRY = "ENTRY"
    CAMERA_MOTION = "CAMERA_MOTION"
    DOORBELL = "DOORBELL"
    DOORLOCK_LOCKED = "DOORLOCK_LOCKED"
    DOORLOCK_UNLOCKED = "DOORLOCK_UNLOCKED"
    DOORLOCK_ERROR = "DOORLOCK_ERROR"
    CONNECTED = "CONNECTED"
    DISCONNECT = "DISCONNECT"
    CONNECTION_LOST = "CONNECTION_LOST"


CONNECTION_EVENTS: Final = frozenset(
    {EventType.CONNECTED, EventType.DISCONNECT, EventType.CONNECTION_LOST}
)

# Transitions after which the lock endpoint is known to report stale state.
LOCKOUT_EVENTS: Final = frozenset(
    {
        EventType.ALARM_DISARM,
        EventType.ALARM_CANCEL,
        EventType.HOME_ARM,
        EventType.AWAY_ARM,
    }
)

EVENT_TYPE_MAP: Final[Mapping[str, EventType]] = {
    "alarm": EventType.ALARM_TRIGGER,
    "alarmCancel": EventType.ALARM_OFF,
}

EVENT_CID_MAP: Final[Mapping[int, EventType]] = {
    # 1400: master PIN disarm, 1407: remote disarm
    1400: EventType.ALARM_DISARM,
    1407: EventType.ALARM_DISARM,
    1406: EventType.ALARM_CANCEL,
    1409: EventType.MOTION,
    9441: EventType.HOME_EXIT_DELAY,
    3441: EventType.HOME_ARM,
    3491: EventType.HOME_ARM,
    # 9401: keypad, 9407: remote
    9401: EventType.AWAY_EXIT_DELAY,
    9407: EventType.AWAY_EXIT_DELAY,
    3401: EventType.AWAY_ARM,
    3407: EventType.AWAY_ARM,
    3481: EventType.AWAY_ARM,
    3487: EventType.AWAY_ARM,
    1429: EventType.ENTRY,
    1110: EventType.ALARM_TRIGGER,
    1120: EventType.ALARM_TRIGGER,
    1132: EventType.ALARM_TRIGGER,
    1134: EventType.ALARM_TRIGGER,
    1154: EventType.ALARM_TRIGGER,
    1159: EventType.ALARM_TRIGGER,
    1162: EventType.ALARM_TRIGGER,
    1170: EventType.CAMERA_MOTION,
    1458: EventType.DOORBELL,
    9700: EventType.DOORLOCK_UNLOCKED,
    9701: EventType.DOORLOCK_LOCKED,
    9703: EventType.DOORLOCK_ERROR,
}

# Automatic self-test pushes; never delivered.
IGNORED_EVENT_CIDS: Final = frozenset({1602})


@dataclass(frozen=True, slots=True)
class RealtimeEvent:
    """One normalised event; ``event_type`` is None for unrecognised pushes."""

    event_type: EventType | None
    data: Mapping[str, Any] | None = None

    @property
    def sensor_type(self) -> int | None:
        """Return the originating sensor type code, if the push carries one."""

        if not self.data:
            return None
        value = self.data.get("sensorType")
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def arms_lockout(self) -> bool:
        """Return True when this event should pause sensor refreshes."""

        return self.event_type in LOCKOUT_EVENTS


def _coerce_cid(value: Any) -> int | None:
    """Return ``value`` as an integer event code when possible."""

    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def translate_push(payload: Mapping[str, Any]) -> RealtimeEvent | None:
    """Translate a raw push payload into a normalised event.

    Returns None for pushes that must not be delivered at all.
    """

    event_type = EVENT_TYPE_MAP.get(str(payload.get("eventType") or ""))
    if event_type is not None:
        return RealtimeEvent(event_type, payload)

    cid = _coerce_cid(payload.get("eventCid"))
    if cid in IGNORED_EVENT_CIDS:
        return None
    return RealtimeEvent(EVENT_CID_MAP.get(cid) if cid is not None else None, payload)


__all__ = [
    "CONNECTION_EVENTS",
    "EVENT_CID_MAP",
    "EVENT_TYPE_MAP",
    "EventType",
    "IGNORED_EVENT_CIDS",
    "LOCKOUT_EVENTS",
    "RealtimeEvent",
    "translate_push",
]
