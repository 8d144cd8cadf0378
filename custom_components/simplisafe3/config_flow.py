"""Config flow handlers for the SimpliSafe 3 integration."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant import config_entries
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.data_entry_flow import FlowResult
import voluptuous as vol

from . import async_get_integration_version, async_validate_refresh_token
from .api import BackendRateLimitError, SimpliSafeError
from .auth import AuthRefreshError
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
)

_LOGGER = logging.getLogger(__name__)


def _login_schema(default_account: str = "") -> vol.Schema:
    """Build the credential form schema with provided defaults."""
    return vol.Schema(
        {
            vol.Required(CONF_REFRESH_TOKEN): str,
            vol.Optional(CONF_ACCOUNT_NUMBER, default=default_account): str,
        }
    )


def _options_schema(sensor_refresh: int, debug: bool) -> vol.Schema:
    """Build the options form schema."""
    return vol.Schema(
        {
            vol.Optional(CONF_SENSOR_REFRESH, default=sensor_refresh): vol.All(
                vol.Coerce(int),
                vol.Range(min=MIN_SENSOR_REFRESH, max=MAX_SENSOR_REFRESH),
            ),
            vol.Optional(CONF_DEBUG, default=debug): bool,
        }
    )


async def _validate_login(
    hass: HomeAssistant, refresh_token: str, account_number: str | None
) -> tuple[dict[str, Any], str]:
    """Validate the token; return entry data and the selected account number.

    Raises:
        ValueError: No single monitoring plan matched.
    """

    tokens, subscriptions = await async_validate_refresh_token(
        hass, refresh_token, account_number
    )
    if len(subscriptions) != 1:
        raise ValueError(f"{len(subscriptions)} matching plans")
    location = subscriptions[0].get("location") or {}
    account = str(location.get("account") or account_number or "")
    data = {
        CONF_REFRESH_TOKEN: tokens.refresh_token,
        CONF_ACCESS_TOKEN: tokens.access_token,
        CONF_ACCOUNT_NUMBER: account,
    }
    return data, account


class SimpliSafeConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Initial setup from a refresh token."""

    VERSION = 1

    async def async_step_user(self, user_input: dict[str, Any] | None = None) -> FlowResult:
        """Collect the refresh token and create the config entry."""
        ver = await async_get_integration_version(self.hass)

        if user_input is None:
            return self.async_show_form(
                step_id="user",
                data_schema=_login_schema(),
                description_placeholders={"version": ver},
            )

        refresh_token = (user_input.get(CONF_REFRESH_TOKEN) or "").strip()
        account_number = (user_input.get(CONF_ACCOUNT_NUMBER) or "").strip() or None

        errors: dict[str, str] = {}
        try:
            data, account = await _validate_login(self.hass, refresh_token, account_number)
        except AuthRefreshError as err:
            errors["base"] = "cannot_connect" if err.status is None else "invalid_auth"
        except BackendRateLimitError:
            errors["base"] = "rate_limited"
        except ValueError:
            errors["base"] = "no_subscriptions"
        except SimpliSafeError:
            errors["base"] = "cannot_connect"
        except Exception:
            _LOGGER.exception("Unexpected error during user step")
            errors["base"] = "unknown"

        if errors:
            return self.async_show_form(
                step_id="user",
                data_schema=_login_schema(account_number or ""),
                errors=errors,
                description_placeholders={"version": ver},
            )

        await self.async_set_unique_id(account)
        self._abort_if_unique_id_configured()
        return self.async_create_entry(title=f"SimpliSafe ({account})", data=data)

    @staticmethod
    def async_get_options_flow(config_entry: ConfigEntry) -> SimpliSafeOptionsFlow:
        """Return the options flow handler for this config entry."""
        return SimpliSafeOptionsFlow(config_entry)


class SimpliSafeOptionsFlow(config_entries.OptionsFlow):
    """Options flow for the sensor refresh interval and debug logging."""

    def __init__(self, entry: ConfigEntry) -> None:
        """Store the entry being configured."""
        self.entry = entry

    async def async_step_init(self, user_input: dict[str, Any] | None = None):
        """Show or process the options form."""
        if user_input is not None:
            return self.async_create_entry(
                title="",
                data={
                    CONF_SENSOR_REFRESH: int(
                        user_input.get(CONF_SENSOR_REFRESH, DEFAULT_SENSOR_REFRESH)
                    ),
                    CONF_DEBUG: bool(user_input.get(CONF_DEBUG, False)),
                },
            )

        schema = _options_schema(
            int(self.entry.options.get(CONF_SENSOR_REFRESH, DEFAULT_SENSOR_REFRESH)),
            bool(self.entry.options.get(CONF_DEBUG, False)),
        )
        ver = await async_get_integration_version(self.hass)
        return self.async_show_form(
            step_id="init", data_schema=schema, description_placeholders={"version": ver}
        )
