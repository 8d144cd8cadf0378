"""Runtime container helpers for SimpliSafe 3 config entries."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from .const import DOMAIN

if TYPE_CHECKING:
    from .api import SimpliSafeClient
    from .auth import SimpliSafeAuth
    from .ws_client import EventListener


@dataclass(slots=True)
class EntryRuntime:
    """Runtime container for a configured SimpliSafe account."""

    client: SimpliSafeClient
    auth: SimpliSafeAuth
    config_entry: ConfigEntry
    subscription_id: str
    subscription: dict[str, Any]
    locks: list[dict[str, Any]] = field(default_factory=list)
    listener: EventListener | None = None
    debug: bool = False
    version: str = ""
    unsub_callbacks: list[Callable[[], None]] = field(default_factory=list)
    _shutdown_complete: bool = False

    async def async_shutdown(self) -> None:
        """Release every resource owned by the entry exactly once."""

        if self._shutdown_complete:
            return
        self._shutdown_complete = True
        callbacks, self.unsub_callbacks = self.unsub_callbacks, []
        for unsub in callbacks:
            unsub()
        self.listener = None
        await self.client.async_shutdown()


def require_runtime(hass: HomeAssistant, entry_id: str) -> EntryRuntime:
    """Return the runtime container stored for ``entry_id``."""

    domain_data = hass.data.get(DOMAIN)
    if not isinstance(domain_data, dict):
        raise LookupError("SimpliSafe runtime data is unavailable")  # noqa: TRY004
    runtime = domain_data.get(entry_id)
    if isinstance(runtime, EntryRuntime):
        return runtime
    raise LookupError("SimpliSafe runtime data is unavailable")


__all__ = ["EntryRuntime", "require_runtime"]
