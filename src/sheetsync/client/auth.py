"""Bearer tokens for the Google APIs.

This module provides:
- AuthProvider: the protocol the HTTP client depends on
- StaticTokenProvider: a fixed token (CI, tests)
- OAuthTokenProvider: refresh-token grant with an in-memory access token
- OAuthCredentials helpers: keyring storage of the refresh token

The browser sign-in flow is out of scope; `sheetsync login` stores a
refresh token obtained elsewhere.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx
import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from sheetsync.client.schemas import TokenResponse
from sheetsync.core.errors import (
    NetworkError,
    NetworkTimeoutError,
    NotAuthenticatedError,
    TokenExpiredError,
)

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "sheetsync"
KEYRING_ACCOUNT = "google"
TOKEN_URL = "https://oauth2.googleapis.com/token"
EXPIRY_MARGIN = 60.0  # seconds


class AuthProvider(Protocol):
    """Source of valid bearer tokens."""

    def get_valid_credential(self) -> str: ...


class StaticTokenProvider:
    """Always returns the same token."""

    def __init__(self, token: str) -> None:
        self._token = token

    def get_valid_credential(self) -> str:
        if not self._token:
            raise NotAuthenticatedError()
        return self._token


@dataclass
class OAuthCredentials:
    """OAuth client and refresh token persisted in the OS keyring."""

    client_id: str
    client_secret: str
    refresh_token: str


def save_credentials(credentials: OAuthCredentials, account: str = KEYRING_ACCOUNT) -> None:
    """Store credentials in the OS keyring."""
    keyring.set_password(KEYRING_SERVICE, account, json.dumps(asdict(credentials)))


def load_credentials(account: str = KEYRING_ACCOUNT) -> OAuthCredentials | None:
    """Load credentials from the OS keyring.

    Returns:
        The credentials, or None if none are stored or the keyring is unusable.
    """
    try:
        raw = keyring.get_password(KEYRING_SERVICE, account)
    except KeyringError as e:
        logger.warning("Keyring unavailable: %s", e)
        return None
    if not raw:
        return None
    try:
        return OAuthCredentials(**json.loads(raw))
    except (ValueError, TypeError):
        logger.warning("Ignoring malformed credentials in keyring")
        return None


def clear_credentials(account: str = KEYRING_ACCOUNT) -> bool:
    """Remove stored credentials. Returns False if none were stored."""
    try:
        keyring.delete_password(KEYRING_SERVICE, account)
    except PasswordDeleteError:
        return False
    return True


class OAuthTokenProvider:
    """Exchanges a stored refresh token for short-lived access tokens.

    The access token is cached in memory and refreshed EXPIRY_MARGIN
    seconds before it expires. Safe to call from several sync threads.
    """

    def __init__(
        self,
        loader: Callable[[], OAuthCredentials | None] = load_credentials,
        token_url: str = TOKEN_URL,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the provider.

        Args:
            loader: Returns the stored credentials (read on every refresh).
            token_url: OAuth token endpoint.
            timeout: Request timeout in seconds.
            clock: Wall clock used for expiry.
        """
        self._loader = loader
        self._token_url = token_url
        self._timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._access_token: str | None = None
        self._expires_at = 0.0

    def invalidate(self) -> None:
        """Drop the cached access token."""
        with self._lock:
            self._access_token = None
            self._expires_at = 0.0

    def get_valid_credential(self) -> str:
        """Return a valid access token, refreshing it if needed.

        Raises:
            NotAuthenticatedError: If no refresh token is stored.
            TokenExpiredError: If the refresh token was rejected.
            NetworkError: If the token endpoint is unreachable.
        """
        with self._lock:
            if self._access_token and self._clock() < self._expires_at - EXPIRY_MARGIN:
                return self._access_token

            credentials = self._loader()
            if credentials is None or not credentials.refresh_token:
                raise NotAuthenticatedError()

            token = self._refresh(credentials)
            self._access_token = token.access_token
            self._expires_at = self._clock() + token.expires_in
            logger.debug("Access token refreshed (expires in %ds)", token.expires_in)
            return token.access_token

    def _refresh(self, credentials: OAuthCredentials) -> TokenResponse:
        try:
            response = httpx.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": credentials.refresh_token,
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError() from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

        if response.status_code in (400, 401):
            logger.warning("Refresh token rejected: %s", response.text)
            raise TokenExpiredError()
        if response.status_code >= 400:
            raise NetworkError(f"Token endpoint returned {response.status_code}")

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenExpiredError(f"Invalid token response: {e}") from e
