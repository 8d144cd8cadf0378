"""OAuth credential holder for the SimpliSafe API."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

import aiohttp

from .const import AUTH_CLIENT_ID, AUTH_REDIRECT_URI, AUTH_TOKEN_URL, USER_AGENT
from .errors import SimpliSafeError
from .sanitize import redact_text, redact_token_fragment

_LOGGER = logging.getLogger(__name__)

TokenListener = Callable[["TokenData"], None]


@dataclass(slots=True)
class TokenData:
    """OAuth token set returned by the SimpliSafe auth server."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, previous: TokenData | None = None) -> TokenData:
        """Create TokenData from a token response, keeping unrotated fields."""

        refresh_token = data.get("refresh_token") or (
            previous.refresh_token if previous else ""
        )
        expires_in = data.get("expires_in")
        return cls(
            access_token=str(data.get("access_token") or ""),
            refresh_token=str(refresh_token),
            token_type=str(data.get("token_type") or "Bearer"),
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
        )


class AuthRefreshError(SimpliSafeError):
    """Refreshing the access token failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Store the HTTP status reported by the auth server, if any."""

        super().__init__(message)
        self.status = status


class SimpliSafeAuth:
    """Hold the current bearer credentials and refresh them on demand."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        refresh_token: str,
        *,
        access_token: str | None = None,
        token_type: str = "Bearer",
        client_id: str = AUTH_CLIENT_ID,
    ) -> None:
        """Initialise the auth handler with a stored refresh token."""
        self._session = session
        self._client_id = client_id
        self._token = TokenData(
            access_token=access_token or "",
            refresh_token=refresh_token,
            token_type=token_type,
        )
        self._lock = asyncio.Lock()
        self._listeners: list[TokenListener] = []

    @property
    def access_token(self) -> str:
        """Return the current access token (may be empty before a refresh)."""
        return self._token.access_token

    @property
    def token_type(self) -> str:
        """Return the token type used in the Authorization header."""
        return self._token.token_type

    @property
    def refresh_token(self) -> str:
        """Return the current refresh token."""
        return self._token.refresh_token

    @property
    def has_access_token(self) -> bool:
        """Return True when an access token is available."""
        return bool(self._token.access_token)

    def authorization_header(self) -> dict[str, str]:
        """Return the Authorization header for the current credentials."""

        return {"Authorization": f"{self.token_type} {self.access_token}"}

    def add_token_listener(self, listener: TokenListener) -> Callable[[], None]:
        """Call ``listener`` with the new tokens after every refresh."""

        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def refresh_credentials(self) -> TokenData:
        """Exchange the refresh token for a new access token.

        Raises:
            AuthRefreshError: The auth server rejected the refresh or could not
                be reached. ``status`` carries the HTTP status when known.
        """

        async with self._lock:
            payload = {
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "refresh_token": self._token.refresh_token,
                "redirect_uri": AUTH_REDIRECT_URI,
            }
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            }
            try:
                async with self._session.post(
                    AUTH_TOKEN_URL,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=25),
                ) as resp:
                    _LOGGER.debug("Token refresh status=%s", resp.status)
                    if resp.status != 200:
                        text = await resp.text()
                        _LOGGER.debug(
                            "Token refresh failed (%s): %s",
                            resp.status,
                            redact_text(text),
                        )
                        raise AuthRefreshError(
                            f"Token refresh failed with status {resp.status}",
                            status=resp.status,
                        )
                    data = await resp.json(content_type=None)
            except (aiohttp.ClientError, TimeoutError) as err:
                raise AuthRefreshError(
                    f"Network error during token refresh: {err}"
                ) from err

            if not isinstance(data, dict) or not data.get("access_token"):
                raise AuthRefreshError("No access_token in refresh response")

            self._token = TokenData.from_dict(data, previous=self._token)
            _LOGGER.debug(
                "Credentials refreshed (access token %s)",
                redact_token_fragment(self._token.access_token),
            )

        for listener in list(self._listeners):
            listener(self._token)
        return self._token


__all__ = ["AuthRefreshError", "SimpliSafeAuth", "TokenData", "TokenListener"]
