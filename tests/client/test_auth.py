"""Tests for token providers and keyring storage."""

import json
from collections.abc import Iterator
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from sheetsync.client.auth import (
    KEYRING_ACCOUNT,
    KEYRING_SERVICE,
    TOKEN_URL,
    OAuthCredentials,
    OAuthTokenProvider,
    StaticTokenProvider,
    clear_credentials,
    load_credentials,
    save_credentials,
)
from sheetsync.core.errors import NetworkError, NotAuthenticatedError, TokenExpiredError

CREDENTIALS = OAuthCredentials(client_id="cid", client_secret="secret", refresh_token="refresh")


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def provider(clock: Clock) -> OAuthTokenProvider:
    return OAuthTokenProvider(loader=lambda: CREDENTIALS, clock=clock)


@pytest.fixture
def fake_keyring() -> Iterator[MagicMock]:
    with patch("sheetsync.client.auth.keyring") as mock:
        yield mock


class TestStaticTokenProvider:
    def test_returns_token(self) -> None:
        assert StaticTokenProvider("abc").get_valid_credential() == "abc"

    def test_empty_token(self) -> None:
        with pytest.raises(NotAuthenticatedError):
            StaticTokenProvider("").get_valid_credential()


class TestOAuthTokenProvider:
    """Tests for the refresh-token grant."""

    def test_refresh_request(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """The stored refresh token is exchanged for an access token."""
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at1", "expires_in": 3600})

        assert provider.get_valid_credential() == "at1"

        form = parse_qs(httpx_mock.get_request().content.decode())
        assert form == {
            "grant_type": ["refresh_token"],
            "refresh_token": ["refresh"],
            "client_id": ["cid"],
            "client_secret": ["secret"],
        }

    def test_token_cached(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at1", "expires_in": 3600})

        provider.get_valid_credential()
        provider.get_valid_credential()

        assert len(httpx_mock.get_requests()) == 1

    def test_refreshed_before_expiry(self, provider: OAuthTokenProvider, clock: Clock, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A token within the expiry margin is replaced."""
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at1", "expires_in": 3600})
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at2", "expires_in": 3600})
        provider.get_valid_credential()

        clock.now += 3600 - 30

        assert provider.get_valid_credential() == "at2"

    def test_invalidate(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at1"})
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "at2"})
        provider.get_valid_credential()

        provider.invalidate()

        assert provider.get_valid_credential() == "at2"

    def test_no_credentials(self, clock: Clock) -> None:
        provider = OAuthTokenProvider(loader=lambda: None, clock=clock)

        with pytest.raises(NotAuthenticatedError):
            provider.get_valid_credential()

    @pytest.mark.parametrize("status", [400, 401])
    def test_rejected_refresh_token(self, provider: OAuthTokenProvider, status: int, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=status, json={"error": "invalid_grant"})

        with pytest.raises(TokenExpiredError):
            provider.get_valid_credential()

    def test_server_error(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=503)

        with pytest.raises(NetworkError):
            provider.get_valid_credential()

    def test_unreachable(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(NetworkError):
            provider.get_valid_credential()

    def test_malformed_response(self, provider: OAuthTokenProvider, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"token_type": "Bearer"})

        with pytest.raises(TokenExpiredError):
            provider.get_valid_credential()


class TestKeyringStorage:
    """Tests for credential persistence in the OS keyring."""

    def test_save(self, fake_keyring: MagicMock) -> None:
        save_credentials(CREDENTIALS)

        service, account, payload = fake_keyring.set_password.call_args.args
        assert (service, account) == (KEYRING_SERVICE, KEYRING_ACCOUNT)
        assert json.loads(payload) == {
            "client_id": "cid",
            "client_secret": "secret",
            "refresh_token": "refresh",
        }

    def test_load(self, fake_keyring: MagicMock) -> None:
        fake_keyring.get_password.return_value = json.dumps(
            {"client_id": "cid", "client_secret": "secret", "refresh_token": "refresh"}
        )

        assert load_credentials() == CREDENTIALS

    def test_load_nothing_stored(self, fake_keyring: MagicMock) -> None:
        fake_keyring.get_password.return_value = None

        assert load_credentials() is None

    def test_load_malformed(self, fake_keyring: MagicMock) -> None:
        fake_keyring.get_password.return_value = '{"client_id": "cid"}'

        assert load_credentials() is None

    def test_keyring_unavailable(self, fake_keyring: MagicMock) -> None:
        fake_keyring.get_password.side_effect = KeyringError("no backend")

        assert load_credentials() is None

    def test_clear(self, fake_keyring: MagicMock) -> None:
        assert clear_credentials() is True
        fake_keyring.delete_password.assert_called_once_with(KEYRING_SERVICE, KEYRING_ACCOUNT)

    def test_clear_nothing_stored(self, fake_keyring: MagicMock) -> None:
        fake_keyring.delete_password.side_effect = PasswordDeleteError()

        assert clear_credentials() is False
