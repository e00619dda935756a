"""End-to-end tests for the login flow over a real loopback listener."""

from __future__ import annotations

import socket
import threading
import time
from http.client import HTTPConnection
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest

from anitrack.auth.credential_store import CredentialStore
from anitrack.auth.flow import FlowState, LoginFlow
from anitrack.exceptions import (
    AuthorizationDeniedError,
    CallbackTimeoutError,
    FlowError,
    LoginCancelledError,
    PortInUseError,
    TokenExchangeError,
)
from anitrack.models import ClientCredentials, OAuthSettings, TokenRecord


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind(("127.0.0.1", port))
            s.listen(1)
        except OSError:
            return False
        return True


def _mock_token_response(payload: dict[str, object], status_code: int = 200) -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


def _redirect(url: str, **params: str) -> int:
    """Play the provider: send the browser redirect for authorization *url*."""
    query = parse_qs(urlsplit(url).query)
    redirect = urlsplit(query["redirect_uri"][0])
    params.setdefault("state", query["state"][0])
    conn = HTTPConnection("127.0.0.1", redirect.port, timeout=5)
    try:
        conn.request("GET", f"{redirect.path}?{urlencode(params)}")
        response = conn.getresponse()
        response.read()
        return response.status
    finally:
        conn.close()


def _browser(**params: str) -> Callable[[str], bool]:
    """An opener that immediately completes the redirect with *params*."""

    def _open(url: str) -> bool:
        _redirect(url, **params)
        return True

    return _open


def _idle_browser(url: str) -> bool:
    return True


@pytest.fixture()
def settings(free_port: int) -> OAuthSettings:
    return OAuthSettings(
        callback_port=free_port,
        callback_timeout=5,
        shutdown_timeout=1,
        exchange_timeout=5,
    )


@pytest.fixture()
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / ".anitrack.conf")


def _flow(settings: OAuthSettings, store: CredentialStore, opener: Callable[[str], bool], **kwargs) -> LoginFlow:
    return LoginFlow(
        settings,
        ClientCredentials(client_id="cid", client_secret="csecret"),
        store,
        opener=opener,
        **kwargs,
    )


def _wait_for_url(flow: LoginFlow, timeout: float = 5.0) -> str:
    deadline = time.monotonic() + timeout
    while flow.authorization_url is None:
        if time.monotonic() > deadline:
            raise AssertionError("flow never presented an authorization URL")
        time.sleep(0.02)
    return flow.authorization_url


class TestLoginFlow:
    def test_successful_login(self, settings: OAuthSettings, store: CredentialStore) -> None:
        flow = _flow(settings, store, _browser(code="abc123"))
        response = _mock_token_response({"access_token": "tok_1", "refresh_token": "ref_1"})

        with patch("anitrack.auth.exchange.httpx.post", return_value=response) as mock_post:
            record = flow.login()

        assert record == TokenRecord(access_token="tok_1", refresh_token="ref_1")
        assert flow.state is FlowState.COMPLETE
        stored = store.load()
        assert stored.access_token == "tok_1"
        assert stored.refresh_token == "ref_1"
        assert _port_is_free(settings.callback_port)

        data = mock_post.call_args.kwargs["data"]
        assert data["code"] == "abc123"
        assert data["redirect_uri"] == settings.redirect_uri
        # MAL uses the plain method, so the verifier sent equals the challenge in the URL.
        challenge = parse_qs(urlsplit(flow.authorization_url).query)["code_challenge"][0]
        assert data["code_verifier"] == challenge

    def test_timeout(self, settings: OAuthSettings, store: CredentialStore) -> None:
        settings = settings.model_copy(update={"callback_timeout": 0.2})
        flow = _flow(settings, store, _idle_browser)

        with patch("anitrack.auth.exchange.httpx.post") as mock_post:
            with pytest.raises(CallbackTimeoutError):
                flow.login()

        mock_post.assert_not_called()
        assert flow.state is FlowState.FAILED
        assert _port_is_free(settings.callback_port)
        assert not store.path.exists()

    def test_back_to_back_logins_conflict_on_port(
        self, settings: OAuthSettings, tmp_path: Path
    ) -> None:
        first = _flow(settings, CredentialStore(tmp_path / "a"), _idle_browser)
        errors: list[BaseException] = []

        def _run() -> None:
            try:
                first.login()
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        thread = threading.Thread(target=_run)
        thread.start()
        try:
            _wait_for_url(first)
            second = _flow(settings, CredentialStore(tmp_path / "b"), _idle_browser)
            with pytest.raises(PortInUseError):
                second.login()
            assert second.state is FlowState.FAILED
        finally:
            first.cancel()
            thread.join(10)

        assert len(errors) == 1
        assert isinstance(errors[0], LoginCancelledError)
        assert first.state is FlowState.FAILED
        assert _port_is_free(settings.callback_port)

    def test_exchange_failure_leaves_file_untouched(
        self, settings: OAuthSettings, store: CredentialStore
    ) -> None:
        store.save(TokenRecord(access_token="old", refresh_token="old_ref"))
        before = store.path.read_bytes()

        flow = _flow(settings, store, _browser(code="abc123"))
        response = _mock_token_response({"error": "invalid_grant"}, status_code=400)
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with pytest.raises(TokenExchangeError) as exc_info:
                flow.login()

        assert exc_info.value.status == 400
        assert flow.state is FlowState.FAILED
        assert store.path.read_bytes() == before
        assert _port_is_free(settings.callback_port)

    def test_denied_by_user(self, settings: OAuthSettings, store: CredentialStore) -> None:
        flow = _flow(
            settings,
            store,
            _browser(error="access_denied", error_description="The user denied access"),
        )
        with patch("anitrack.auth.exchange.httpx.post") as mock_post:
            with pytest.raises(AuthorizationDeniedError, match="access_denied"):
                flow.login()
        mock_post.assert_not_called()
        assert flow.state is FlowState.FAILED
        assert not store.path.exists()

    def test_cancel_releases_port(self, settings: OAuthSettings, store: CredentialStore) -> None:
        flow = _flow(settings, store, _idle_browser)
        timer = threading.Timer(0.3, flow.cancel)
        timer.start()
        try:
            with pytest.raises(LoginCancelledError):
                flow.login()
        finally:
            timer.cancel()
        assert flow.state is FlowState.FAILED
        assert _port_is_free(settings.callback_port)
        assert not store.path.exists()

    def test_cancel_before_login(self, settings: OAuthSettings, store: CredentialStore) -> None:
        flow = _flow(settings, store, _idle_browser)
        flow.cancel()
        with pytest.raises(LoginCancelledError):
            flow.login()
        assert flow.state is FlowState.FAILED

    def test_keyboard_interrupt_stops_listener(
        self, settings: OAuthSettings, store: CredentialStore
    ) -> None:
        listener = MagicMock()
        listener.wait.side_effect = KeyboardInterrupt
        flow = _flow(settings, store, _idle_browser, listener_factory=lambda s, st: listener)

        with pytest.raises(LoginCancelledError):
            flow.login()

        listener.start.assert_called_once()
        listener.stop.assert_called()
        assert flow.state is FlowState.FAILED

    def test_flow_runs_once(self, settings: OAuthSettings, store: CredentialStore) -> None:
        settings = settings.model_copy(update={"callback_timeout": 0.1})
        flow = _flow(settings, store, _idle_browser)
        with pytest.raises(CallbackTimeoutError):
            flow.login()
        with pytest.raises(FlowError, match="already failed"):
            flow.login()

    def test_listener_gets_expected_state(self, settings: OAuthSettings, store: CredentialStore) -> None:
        seen: dict[str, object] = {}
        listener = MagicMock()
        listener.wait.side_effect = CallbackTimeoutError("timed out")

        def _factory(s: OAuthSettings, state: str):
            seen["state"] = state
            return listener

        flow = _flow(settings, store, _idle_browser, listener_factory=_factory)
        with pytest.raises(CallbackTimeoutError):
            flow.login()
        url_state = parse_qs(urlsplit(flow.authorization_url).query)["state"][0]
        assert seen["state"] == url_state


class TestBrowser:
    def test_no_browser_skips_opener(self, settings: OAuthSettings, store: CredentialStore) -> None:
        opener = MagicMock(return_value=True)
        flow = _flow(settings, store, opener, open_browser=False)

        def _user_pastes_url() -> None:
            _redirect(_wait_for_url(flow), code="abc123")

        thread = threading.Thread(target=_user_pastes_url)
        thread.start()
        response = _mock_token_response({"access_token": "tok_1"})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            record = flow.login()
        thread.join(5)

        assert record.access_token == "tok_1"
        opener.assert_not_called()

    def test_browser_failure_is_not_fatal(
        self, settings: OAuthSettings, store: CredentialStore
    ) -> None:
        def _broken_browser(url: str) -> bool:
            _redirect(url, code="abc123")
            raise RuntimeError("no display")

        flow = _flow(settings, store, _broken_browser)
        response = _mock_token_response({"access_token": "tok_1"})
        with patch("anitrack.auth.exchange.httpx.post", return_value=response):
            with patch("anitrack.auth.flow.warning") as mock_warning:
                record = flow.login()
                # The opener thread may still be reporting the failure.
                for _ in range(50):
                    if mock_warning.called:
                        break
                    time.sleep(0.02)

        assert record.access_token == "tok_1"
        assert "no display" in mock_warning.call_args.args[0]
        assert flow.state is FlowState.COMPLETE

    def test_url_is_printed(
        self, settings: OAuthSettings, store: CredentialStore, capsys: pytest.CaptureFixture[str]
    ) -> None:
        settings = settings.model_copy(update={"callback_timeout": 0.1})
        flow = _flow(settings, store, _idle_browser, open_browser=False)
        with pytest.raises(CallbackTimeoutError):
            flow.login()
        err = capsys.readouterr().err
        assert flow.authorization_url in err
        assert "myanimelist.net/v1/oauth2/authorize" in err
