"""Tests for token refresh and transport construction."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError

from gmail_fetcher.core.auth import CredentialsTokenProvider, authenticate, build_authorized_http
from gmail_fetcher.core.exceptions import AuthError


@pytest.fixture
def creds() -> MagicMock:
    mock_creds = MagicMock()
    mock_creds.valid = True
    mock_creds.token = "access-1"
    mock_creds.refresh_token = "refresh-1"
    mock_creds.to_json.return_value = '{"token": "access-2"}'
    return mock_creds


class TestCredentialsTokenProvider:
    def test_valid_token_returned_without_refresh(self, creds: MagicMock) -> None:
        provider = CredentialsTokenProvider(creds)

        assert provider.get_access_token() == "access-1"
        creds.refresh.assert_not_called()

    def test_invalid_token_refreshed_on_access(self, creds: MagicMock) -> None:
        creds.valid = False
        provider = CredentialsTokenProvider(creds)

        provider.get_access_token()

        creds.refresh.assert_called_once()

    def test_refresh_saves_token(self, creds: MagicMock, tmp_path: Path) -> None:
        token_path = tmp_path / "creds" / "token.json"
        provider = CredentialsTokenProvider(creds, token_path)

        provider.refresh_token()

        assert token_path.read_text() == '{"token": "access-2"}'

    def test_refresh_error_becomes_auth_error(self, creds: MagicMock) -> None:
        creds.refresh.side_effect = RefreshError("invalid_grant")
        provider = CredentialsTokenProvider(creds)

        with pytest.raises(AuthError, match="re-authenticate"):
            provider.refresh_token()

    def test_missing_refresh_token(self, creds: MagicMock) -> None:
        creds.refresh_token = None
        provider = CredentialsTokenProvider(creds)

        with pytest.raises(AuthError):
            provider.refresh_token()
        creds.refresh.assert_not_called()

    def test_refreshes_serialized(self, creds: MagicMock) -> None:
        in_refresh = 0
        peak = 0
        lock = threading.Lock()

        def slow_refresh(_request: object) -> None:
            nonlocal in_refresh, peak
            with lock:
                in_refresh += 1
                peak = max(peak, in_refresh)
            threading.Event().wait(0.01)
            with lock:
                in_refresh -= 1

        creds.refresh.side_effect = slow_refresh
        provider = CredentialsTokenProvider(creds)
        threads = [threading.Thread(target=provider.refresh_token) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 1
        assert creds.refresh.call_count == 5


class TestAuthenticate:
    def test_missing_credentials_file(self, tmp_path: Path) -> None:
        with pytest.raises(AuthError, match="Credentials file not found"):
            authenticate(tmp_path / "client_secret.json", tmp_path / "token.json")

    def test_cached_valid_token(self, tmp_path: Path) -> None:
        token_path = tmp_path / "token.json"
        token_path.write_text("{}")
        cached = MagicMock(valid=True)

        with patch(
            "gmail_fetcher.core.auth.Credentials.from_authorized_user_file", return_value=cached
        ):
            assert authenticate(tmp_path / "client_secret.json", token_path) is cached


class TestBuildAuthorizedHttp:
    def test_transport_has_socket_timeout(self, creds: MagicMock) -> None:
        http = build_authorized_http(creds, 12.5)

        assert http.credentials is creds
        assert http.http.timeout == 12.5

    def test_each_call_builds_new_transport(self, creds: MagicMock) -> None:
        assert build_authorized_http(creds, 5).http is not build_authorized_http(creds, 5).http
