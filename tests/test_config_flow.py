from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
import voluptuous as vol

import custom_components.simplisafe3.config_flow as config_flow
from custom_components.simplisafe3 import sensor_refresh_interval
from custom_components.simplisafe3.auth import AuthRefreshError, TokenData
from custom_components.simplisafe3.const import (
    CONF_ACCESS_TOKEN,
    CONF_ACCOUNT_NUMBER,
    CONF_DEBUG,
    CONF_REFRESH_TOKEN,
    CONF_SENSOR_REFRESH,
)
from custom_components.simplisafe3.errors import (
    BackendRateLimitError,
    BackendRequestError,
)


def _schema_default(schema: vol.Schema, field: str) -> Any:
    for key in schema.schema:
        if getattr(key, "schema", key) == field:
            return key.default()
    raise AssertionError(f"Missing default for {field}")


def _patch_validate(
    monkeypatch: pytest.MonkeyPatch, result: Any
) -> list[tuple[str, str | None]]:
    calls: list[tuple[str, str | None]] = []

    async def _fake(hass: Any, refresh_token: str, account_number: str | None = None):
        calls.append((refresh_token, account_number))
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(config_flow, "async_validate_refresh_token", _fake)
    return calls


@pytest.mark.asyncio
async def test_validate_login_returns_rotated_tokens(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tokens = TokenData(access_token="acc", refresh_token="rot")
    calls = _patch_validate(
        monkeypatch, (tokens, [{"sid": 1, "location": {"account": "ACC1"}}])
    )

    data, account = await config_flow._validate_login(None, "orig", None)

    assert calls == [("orig", None)]
    assert account == "ACC1"
    assert data == {
        CONF_REFRESH_TOKEN: "rot",
        CONF_ACCESS_TOKEN: "acc",
        CONF_ACCOUNT_NUMBER: "ACC1",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("plans", [[], [{"sid": 1}, {"sid": 2}]])
async def test_validate_login_requires_single_plan(
    monkeypatch: pytest.MonkeyPatch, plans: list[dict[str, Any]]
) -> None:
    _patch_validate(monkeypatch, (TokenData(access_token="a", refresh_token="r"), plans))

    with pytest.raises(ValueError):
        await config_flow._validate_login(None, "r", None)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (AuthRefreshError("rejected", status=400), "invalid_auth"),
        (AuthRefreshError("offline"), "cannot_connect"),
        (BackendRateLimitError("blocked"), "rate_limited"),
        (BackendRequestError(500, "boom"), "cannot_connect"),
        (RuntimeError("surprise"), "unknown"),
    ],
)
async def test_user_step_maps_errors(
    monkeypatch: pytest.MonkeyPatch, error: Exception, expected: str
) -> None:
    _patch_validate(monkeypatch, error)

    async def _version(hass: Any) -> str:
        return "0.1.0"

    monkeypatch.setattr(config_flow, "async_get_integration_version", _version)
    flow = config_flow.SimpliSafeConfigFlow()
    flow.hass = MagicMock()
    flow.context = {}

    result = await flow.async_step_user(
        {CONF_REFRESH_TOKEN: " token ", CONF_ACCOUNT_NUMBER: "ACC1"}
    )

    assert result["step_id"] == "user"
    assert result["errors"] == {"base": expected}
    assert _schema_default(result["data_schema"], CONF_ACCOUNT_NUMBER) == "ACC1"


def test_options_schema_bounds_refresh_interval() -> None:
    schema = config_flow._options_schema(30, False)

    assert schema({CONF_SENSOR_REFRESH: "45"}) == {
        CONF_SENSOR_REFRESH: 45,
        CONF_DEBUG: False,
    }
    assert _schema_default(schema, CONF_SENSOR_REFRESH) == 30
    with pytest.raises(vol.Invalid):
        schema({CONF_SENSOR_REFRESH: 5})
    with pytest.raises(vol.Invalid):
        schema({CONF_SENSOR_REFRESH: 7200})


@pytest.mark.parametrize(
    ("options", "expected"),
    [
        ({}, 15),
        ({CONF_SENSOR_REFRESH: 60}, 60),
        ({CONF_SENSOR_REFRESH: "120"}, 120),
        ({CONF_SENSOR_REFRESH: 1}, 10),
        ({CONF_SENSOR_REFRESH: 99999}, 3600),
        ({CONF_SENSOR_REFRESH: "fast"}, 15),
    ],
)
def test_sensor_refresh_interval_is_clamped(
    options: dict[str, Any], expected: int
) -> None:
    assert sensor_refresh_interval(options) == expected
