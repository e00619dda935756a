"""Login flow controller: Authorization Code grant with PKCE from a terminal.

:class:`LoginFlow` drives one login attempt through the states::

    IDLE -> AWAITING_REDIRECT -> EXCHANGING -> COMPLETE
      \\            \\                 \\
       +------------+-----------------+--> FAILED

1. Generate a PKCE pair and a ``state`` value, bind the callback listener.
2. Print the authorization URL and try to open it in a browser.
3. Block until the redirect arrives, the wait times out, or it is cancelled.
4. Stop the listener and exchange the code for tokens.
5. Hand the :class:`~anitrack.models.TokenRecord` to the credential store.

Every exit path stops the listener, so a failed or interrupted login never
leaves the callback port bound. The credential file is only touched after a
successful exchange.
"""

from __future__ import annotations

import threading
import webbrowser
from enum import Enum
from typing import Callable, Optional

from anitrack.auth.authorize import build_authorization_url, make_authorization_request, new_state
from anitrack.auth.callback import CallbackListener
from anitrack.auth.credential_store import CredentialStore
from anitrack.auth.exchange import exchange_code
from anitrack.auth.pkce import generate_pkce_pair
from anitrack.exceptions import AuthorizationDeniedError, FlowError, LoginCancelledError
from anitrack.models import ClientCredentials, OAuthSettings, TokenRecord
from anitrack.output import debug, notice, warning

ListenerFactory = Callable[[OAuthSettings, Optional[str]], CallbackListener]


class FlowState(str, Enum):
    """Lifecycle states of a :class:`LoginFlow`."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


_TERMINAL = frozenset({FlowState.COMPLETE, FlowState.FAILED})


class LoginFlow:
    """Run one OAuth2 Authorization Code + PKCE login.

    Each instance owns its PKCE pair, its ``state`` value and its listener,
    and can be run once.

    Args:
        settings: Provider endpoints and listener settings.
        credentials: The OAuth client id and secret.
        store: Where the resulting token record is persisted.
        open_browser: When ``False`` only print the authorization URL.
        opener: Callable used to open the browser (``webbrowser.open``).
        listener_factory: Builds the callback listener from ``settings``
            and the expected ``state``.

    Example::

        flow = LoginFlow(settings, ClientCredentials(client_id="abc"), CredentialStore())
        record = flow.login()
    """

    def __init__(
        self,
        settings: OAuthSettings,
        credentials: ClientCredentials,
        store: CredentialStore,
        open_browser: bool = True,
        opener: Callable[[str], bool] = webbrowser.open,
        listener_factory: ListenerFactory = CallbackListener.from_settings,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._store = store
        self._open_browser = open_browser
        self._opener = opener
        self._listener_factory = listener_factory

        self._lock = threading.Lock()
        self._state = FlowState.IDLE
        self._listener: Optional[CallbackListener] = None
        self._cancelled = False
        self.authorization_url: Optional[str] = None

    @property
    def state(self) -> FlowState:
        return self._state

    def login(self) -> TokenRecord:
        """Run the flow to completion and return the persisted token record.

        Raises:
            FlowError: If this flow has already been run.
            PKCEError: If no PKCE pair could be generated.
            PortInUseError: If the callback port is taken (another login?).
            BindError: On other bind failures.
            AuthorizationDeniedError: If the provider redirected with an error.
            CallbackTimeoutError: If no redirect arrived in time.
            LoginCancelledError: On Ctrl-C or :meth:`cancel`.
            TokenExchangeError: If the token endpoint rejected the code.
            MalformedResponseError: If the token response was unusable.
            CredentialWriteError: If the credential file could not be written.
        """
        with self._lock:
            if self._state is not FlowState.IDLE:
                raise FlowError(f"Login flow already {self._state.value}; start a new one")
            if self._cancelled:
                self._state = FlowState.FAILED
                raise LoginCancelledError("Login cancelled before it started")
            # Claim the flow before any work so a concurrent login() fails fast.
            self._state = FlowState.AWAITING_REDIRECT

        listener: Optional[CallbackListener] = None
        try:
            pkce = generate_pkce_pair(self._settings.code_challenge_method)
            state = new_state()
            request = make_authorization_request(self._settings, self._credentials, pkce, state)

            listener = self._listener_factory(self._settings, state)
            with self._lock:
                self._listener = listener
                cancelled = self._cancelled
            if cancelled:
                raise LoginCancelledError("Login cancelled before it started")
            listener.start()
            debug("Login flow: awaiting redirect")

            url = build_authorization_url(self._settings.authorization_url, request)
            self.authorization_url = url
            self._present(url)

            result = listener.wait(self._settings.callback_timeout)
            listener.stop()

            if not result.ok:
                raise AuthorizationDeniedError(
                    result.error or "invalid_request", result.error_description
                )

            self._transition(FlowState.EXCHANGING)
            record = exchange_code(
                token_url=self._settings.token_url,
                client_id=self._credentials.client_id,
                client_secret=self._credentials.client_secret,
                code=result.code or "",
                redirect_uri=request.redirect_uri,
                verifier=pkce.verifier,
                timeout=self._settings.exchange_timeout,
            )
            self._store.save(record)
            self._transition(FlowState.COMPLETE)
            return record
        except KeyboardInterrupt:
            self._transition(FlowState.FAILED)
            raise LoginCancelledError("Login cancelled") from None
        except BaseException:
            self._transition(FlowState.FAILED)
            raise
        finally:
            if listener is not None:
                listener.stop()

    def cancel(self) -> None:
        """Abort the flow from another thread.

        A pending wait for the redirect ends with
        :class:`~anitrack.exceptions.LoginCancelledError`. Has no effect
        once the code has been received.
        """
        with self._lock:
            self._cancelled = True
            listener = self._listener
        if listener is not None:
            listener.cancel()

    def _transition(self, new_state: FlowState) -> None:
        with self._lock:
            if self._state in _TERMINAL:
                return
            debug(f"Login flow: {self._state.value} -> {new_state.value}")
            self._state = new_state

    def _present(self, url: str) -> None:
        """Print the URL and, unless disabled, open it in a browser.

        The browser is opened on a daemon thread because some openers block
        until the browser exits. Failures only produce a warning; the printed
        URL still works.
        """
        notice("Please visit the following URL to log in:")
        notice(url)
        if not self._open_browser:
            return

        def _open() -> None:
            try:
                opened = self._opener(url)
            except Exception as exc:  # noqa: BLE001
                warning(f"Could not open a browser ({exc}); open the URL above manually.")
                return
            if opened is False:
                warning("No browser available; open the URL above manually.")

        threading.Thread(target=_open, name="anitrack-browser", daemon=True).start()
