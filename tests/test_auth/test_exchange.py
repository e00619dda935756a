"""Tests for the authorization code to token exchange."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from anitrack.auth.exchange import exchange_code, parse_token_response
from anitrack.exceptions import MalformedResponseError, TokenExchangeError

TOKEN_URL = "https://myanimelist.net/v1/oauth2/token"


def _mock_response(
    payload: object = None,
    status_code: int = 200,
    text: str | None = None,
) -> MagicMock:
    """Create a mock httpx.Response."""
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    response.text = text if text is not None else str(payload)
    return response


def _exchange(**kwargs: object):
    params: dict[str, object] = {
        "token_url": TOKEN_URL,
        "client_id": "cid",
        "client_secret": "csecret",
        "code": "abc123",
        "redirect_uri": "http://localhost:9999/oauth/callback",
        "verifier": "verifier-xyz",
    }
    params.update(kwargs)
    return exchange_code(**params)  # type: ignore[arg-type]


class TestExchangeCode:
    def test_posts_canonical_form(self) -> None:
        response = _mock_response({"access_token": "tok_1", "refresh_token": "ref_1"})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response) as mock_post:
            record = _exchange(timeout=12.0)

        assert record.access_token == "tok_1"
        assert record.refresh_token == "ref_1"
        assert record.expiry is None

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == TOKEN_URL
        assert kwargs["data"] == {
            "client_id": "cid",
            "client_secret": "csecret",
            "code": "abc123",
            "redirect_uri": "http://localhost:9999/oauth/callback",
            "code_verifier": "verifier-xyz",
            "grant_type": "authorization_code",
        }
        assert kwargs["timeout"] == 12.0

    def test_empty_secret_is_omitted(self) -> None:
        response = _mock_response({"access_token": "tok_1"})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response) as mock_post:
            _exchange(client_secret="")
        assert "client_secret" not in mock_post.call_args.kwargs["data"]

    def test_non_2xx_raises_with_status_and_body(self) -> None:
        body = '{"error":"invalid_grant","message":"code expired"}'
        response = _mock_response({"error": "invalid_grant"}, status_code=400, text=body)
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with pytest.raises(TokenExchangeError, match="status 400") as exc_info:
                _exchange()
        assert exc_info.value.status == 400
        assert exc_info.value.body == body

    def test_no_retry_on_server_error(self) -> None:
        response = _mock_response(None, status_code=503, text="unavailable")
        with patch("anitrack.auth.exchange.httpx.post", return_value=response) as mock_post:
            with pytest.raises(TokenExchangeError):
                _exchange()
        assert mock_post.call_count == 1

    def test_network_error(self) -> None:
        with patch(
            "anitrack.auth.exchange.httpx.post",
            side_effect=httpx.ConnectError("connection refused"),
        ):
            with pytest.raises(TokenExchangeError, match="connection refused") as exc_info:
                _exchange()
        assert exc_info.value.status is None

    def test_invalid_json_is_malformed(self) -> None:
        response = _mock_response(ValueError("Expecting value"), text="<html>")
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponseError, match="not valid JSON"):
                _exchange()

    def test_out_of_range_expiry_is_malformed(self) -> None:
        response = _mock_response({"access_token": "tok_1", "expires_in": 1e300})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponseError, match="expires_in") as exc_info:
                _exchange()
        assert exc_info.value.exit_code == 3

    def test_missing_access_token_is_malformed(self) -> None:
        response = _mock_response({"token_type": "Bearer"})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponseError, match="access_token"):
                _exchange()


class TestParseTokenResponse:
    def test_expires_in_becomes_absolute_expiry(self) -> None:
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        record = parse_token_response(
            {"access_token": "a", "refresh_token": "r", "expires_in": 3600}, now=now
        )
        assert record.expiry == now + timedelta(hours=1)

    def test_non_object_is_malformed(self) -> None:
        with pytest.raises(MalformedResponseError, match="not a JSON object"):
            parse_token_response(["access_token"])

    @pytest.mark.parametrize("token", ["", 42, None])
    def test_unusable_access_token(self, token: object) -> None:
        with pytest.raises(MalformedResponseError):
            parse_token_response({"access_token": token})

    def test_non_string_refresh_token(self) -> None:
        with pytest.raises(MalformedResponseError, match="refresh_token"):
            parse_token_response({"access_token": "a", "refresh_token": 7})

    @pytest.mark.parametrize(
        "expires_in",
        ["soon", [3600], 1e300, float("inf"), float("-inf"), "nan", 10**20, 10**400],
    )
    def test_bad_expires_in(self, expires_in: object) -> None:
        with pytest.raises(MalformedResponseError, match="expires_in"):
            parse_token_response({"access_token": "a", "expires_in": expires_in})

    def test_empty_refresh_token_is_absent(self) -> None:
        record = parse_token_response({"access_token": "a", "refresh_token": ""})
        assert record.refresh_token is None
