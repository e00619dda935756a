"""Tests for authorization URL construction."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

from anitrack.auth.authorize import build_authorization_url, make_authorization_request, new_state
from anitrack.models import AuthorizationRequest, ClientCredentials, OAuthSettings, PKCEPair


def _request(**kwargs: str) -> AuthorizationRequest:
    defaults = {
        "client_id": "client 1",
        "redirect_uri": "http://localhost:9999/oauth/callback",
        "scope": "read write",
        "state": "st&ate",
        "code_challenge": "challenge",
        "code_challenge_method": "plain",
    }
    defaults.update(kwargs)
    return AuthorizationRequest(**defaults)


class TestBuildAuthorizationUrl:
    def test_includes_all_parameters(self) -> None:
        url = build_authorization_url("https://myanimelist.net/v1/oauth2/authorize", _request())
        parts = urlsplit(url)
        assert parts.scheme == "https"
        assert parts.netloc == "myanimelist.net"
        assert parts.path == "/v1/oauth2/authorize"
        query = parse_qs(parts.query)
        assert query == {
            "response_type": ["code"],
            "client_id": ["client 1"],
            "redirect_uri": ["http://localhost:9999/oauth/callback"],
            "scope": ["read write"],
            "state": ["st&ate"],
            "code_challenge": ["challenge"],
            "code_challenge_method": ["plain"],
        }

    def test_percent_encodes_values(self) -> None:
        url = build_authorization_url("https://example.com/authorize", _request())
        assert "st%26ate" in url
        assert "http%3A%2F%2Flocalhost%3A9999%2Foauth%2Fcallback" in url
        assert " " not in url

    def test_empty_scope_is_omitted(self) -> None:
        url = build_authorization_url("https://example.com/authorize", _request(scope=""))
        assert "scope" not in parse_qs(urlsplit(url).query)

    def test_existing_query_is_kept(self) -> None:
        url = build_authorization_url("https://example.com/authorize?prompt=login", _request())
        query = parse_qs(urlsplit(url).query)
        assert query["prompt"] == ["login"]
        assert query["client_id"] == ["client 1"]


class TestMakeAuthorizationRequest:
    def test_uses_settings_and_pkce(self) -> None:
        settings = OAuthSettings(callback_port=8123, scopes=["read", "write"])
        pkce = PKCEPair(verifier="v", challenge="c", method="plain")
        request = make_authorization_request(settings, ClientCredentials(client_id="id"), pkce, "s")
        assert request.client_id == "id"
        assert request.redirect_uri == "http://localhost:8123/oauth/callback"
        assert request.scope == "read write"
        assert request.state == "s"
        assert request.code_challenge == "c"
        assert request.code_challenge_method == "plain"


def test_new_state_is_random() -> None:
    assert new_state() != new_state()
    assert len(new_state()) >= 32
