"""Local HTTP listener that receives the provider's authorization redirect.

:class:`CallbackListener` binds the fixed redirect port right before the
browser is sent to the provider and serves on a background thread. The first
valid request to the callback path is handed to the waiting
:class:`~anitrack.auth.flow.LoginFlow` through a :class:`CallbackSlot`, the
browser gets a static confirmation page, and the listener shuts itself down.

The slot is a single-slot, single-use rendezvous owned by one listener, so
one login can never observe another's redirect. Exactly one of three things
settles it: a delivered :class:`~anitrack.models.CallbackResult`, a timeout,
or a cancellation. Whatever arrives afterwards is answered and discarded.

``stop()`` is idempotent and bounded: it stops accepting connections, gives
in-flight responses ``shutdown_timeout`` seconds to finish, then closes the
socket regardless. It is safe to call before ``start()``, twice, or from
several threads at once.
"""

from __future__ import annotations

import errno
import hmac
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from anitrack.exceptions import (
    BindError,
    CallbackTimeoutError,
    ListenerError,
    LoginCancelledError,
    PortInUseError,
)
from anitrack.models import CallbackResult, OAuthSettings
from anitrack.output import debug

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}

# Extra time a second stop() caller waits beyond the drain window.
_STOP_GRACE = 1.0


def _page(heading: str, detail: str) -> bytes:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        "<title>anitrack</title></head>"
        f"<body><h2>{heading}</h2><p>{detail}</p></body></html>"
    ).encode("utf-8")


_SUCCESS_PAGE = _page(
    "Authentication successful",
    "You may now close this tab and return to the terminal.",
)
_FAILURE_PAGE = _page(
    "Authentication failed",
    "Return to the terminal for details. You may close this tab.",
)
_HANDLED_PAGE = _page(
    "Sign-in already handled",
    "This sign-in request is no longer waiting for a response. You may close this tab.",
)
_STATE_MISMATCH_PAGE = _page(
    "Invalid sign-in response",
    "This response does not belong to the sign-in in progress and was ignored.",
)
_NOT_FOUND_PAGE = _page("Not found", "")


class CallbackSlot:
    """One-shot rendezvous between the listener and the waiting flow.

    The first of :meth:`offer`, :meth:`close`, or a timed-out :meth:`wait`
    settles the slot; every later attempt to settle it is refused.

    Example::

        slot = CallbackSlot()
        slot.offer(CallbackResult(code="abc"))   # True
        slot.offer(CallbackResult(code="xyz"))   # False, discarded
        slot.wait(1.0).code                      # "abc"
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._result: Optional[CallbackResult] = None
        self._outcome: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self._settled.is_set()

    def offer(self, result: CallbackResult) -> bool:
        """Deliver *result* if the slot is still open. Returns whether it was taken."""
        with self._lock:
            if self._outcome is not None:
                return False
            self._result = result
            self._outcome = "delivered"
            self._settled.set()
            return True

    def close(self) -> bool:
        """Cancel the rendezvous. Returns ``False`` if it was already settled."""
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = "cancelled"
            self._settled.set()
            return True

    def wait(self, timeout: float) -> CallbackResult:
        """Block until the slot is settled or *timeout* seconds pass.

        Raises:
            CallbackTimeoutError: Nothing arrived in time. The slot is closed
                in the same step, so a redirect racing the deadline is
                discarded rather than half-delivered.
            LoginCancelledError: The slot was closed by :meth:`close`.
        """
        self._settled.wait(timeout)
        with self._lock:
            if self._outcome is None:
                self._outcome = "timed_out"
                self._settled.set()
            outcome = self._outcome
            result = self._result

        if outcome == "delivered":
            assert result is not None
            return result
        if outcome == "cancelled":
            raise LoginCancelledError("Login cancelled before the browser redirect arrived")
        raise CallbackTimeoutError(
            f"No authorization redirect received within {timeout:g} seconds"
        )


class _CallbackServer(ThreadingHTTPServer):
    """HTTP server that reports request lifetimes back to its listener."""

    daemon_threads = True
    block_on_close = False
    # SO_REUSEADDR on POSIX still refuses a second live listener; on Windows it would not.
    allow_reuse_address = os.name != "nt"
    allow_reuse_port = False

    def __init__(self, address: tuple[str, int], listener: CallbackListener) -> None:
        self.listener = listener
        super().__init__(address, _CallbackHandler)

    def process_request(self, request: Any, client_address: Any) -> None:
        self.listener._request_started()
        try:
            super().process_request(request, client_address)
        except BaseException:
            self.listener._request_finished()
            raise

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self.listener._request_finished()


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:  # noqa: N802
        listener = self.server.listener
        parts = urlsplit(self.path)
        if parts.path != listener.path:
            self._respond(404, _NOT_FOUND_PAGE)
            return

        params = parse_qs(parts.query)

        def first(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values else None

        state = first("state")
        if not listener.state_matches(state):
            debug("Ignoring callback with mismatched state")
            self._respond(400, _STATE_MISMATCH_PAGE)
            return

        result = CallbackResult(
            code=first("code") or None,
            error=first("error") or None,
            error_description=first("error_description"),
            state=state,
        )
        if result.code is None and result.error is None:
            result = CallbackResult(
                error="invalid_request",
                error_description="redirect carried neither a code nor an error",
                state=state,
            )

        if not listener.slot.offer(result):
            debug("Discarding callback received after the login was settled")
            self._respond(200, _HANDLED_PAGE)
            return

        self._respond(200, _SUCCESS_PAGE if result.ok else _FAILURE_PAGE)
        listener.stop_in_background()

    def _respond(self, status: int, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)
        self.wfile.flush()

    def log_message(self, format: str, *args: Any) -> None:
        debug(f"callback: {format % args}")


class CallbackListener:
    """Transient HTTP endpoint that captures one authorization redirect.

    Args:
        host: Interface to bind.
        port: TCP port to bind. ``0`` picks a free port (used in tests).
        path: Callback path; requests to any other path get a 404.
        expected_state: The ``state`` sent with the authorization request.
            Callbacks carrying a different value are rejected. Required;
            pass ``None`` explicitly to disable the check.
        shutdown_timeout: Seconds :meth:`stop` waits for in-flight responses.

    Example::

        listener = CallbackListener(port=9999, expected_state=state).start()
        try:
            result = listener.wait(300)
        finally:
            listener.stop()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9999,
        path: str = "/oauth/callback",
        *,
        expected_state: Optional[str],
        shutdown_timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self.expected_state = expected_state
        self.shutdown_timeout = shutdown_timeout
        self.slot = CallbackSlot()

        self._lifecycle = threading.Lock()
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self._stopped = threading.Event()
        self._idle = threading.Condition()
        self._in_flight = 0

    @classmethod
    def from_settings(
        cls, settings: OAuthSettings, expected_state: Optional[str]
    ) -> CallbackListener:
        """Build a listener for the redirect URI described by *settings*."""
        return cls(
            host=settings.bind_address,
            port=settings.callback_port,
            path=settings.callback_path,
            expected_state=expected_state,
            shutdown_timeout=settings.shutdown_timeout,
        )

    @property
    def bound_port(self) -> Optional[int]:
        """The port actually bound, or ``None`` when not started."""
        if self._server is None:
            return None
        return self._server.server_address[1]

    @property
    def is_running(self) -> bool:
        return self._server is not None and not self._stopped.is_set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> CallbackListener:
        """Bind the port and start serving on a daemon thread.

        Raises:
            PortInUseError: The port is already bound (another login?).
            BindError: Any other OS-level bind failure.
            ListenerError: The listener was already started once.
        """
        with self._lifecycle:
            if self._server is not None or self._stopping:
                raise ListenerError("Callback listener can only be started once")
            try:
                server = _CallbackServer((self.host, self.port), self)
            except OSError as exc:
                if exc.errno in _ADDR_IN_USE:
                    raise PortInUseError(
                        f"Port {self.port} is already in use; "
                        "is another login in progress?"
                    ) from exc
                raise BindError(f"Cannot listen on {self.host}:{self.port}: {exc}") from exc

            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="anitrack-callback",
                daemon=True,
            )
            thread.start()
            self._server = server
            self._thread = thread

        debug(f"Callback listener started on {self.host}:{self.bound_port}{self.path}")
        return self

    def stop(self) -> None:
        """Stop serving and release the port. Idempotent and bounded."""
        with self._lifecycle:
            if self._server is None:
                return
            first = not self._stopping
            self._stopping = True
        if not first:
            self._stopped.wait(self.shutdown_timeout + _STOP_GRACE)
            return

        server = self._server
        thread = self._thread
        try:
            server.shutdown()
            if thread is not None:
                thread.join(self.shutdown_timeout)
            self._drain(self.shutdown_timeout)
        finally:
            server.server_close()
            self.slot.close()
            self._stopped.set()
            debug("Callback listener stopped")

    def stop_in_background(self) -> None:
        """Start :meth:`stop` on a helper thread (used from request handlers)."""
        threading.Thread(
            target=self.stop, name="anitrack-callback-stop", daemon=True
        ).start()

    # ------------------------------------------------------------------ #
    # Rendezvous
    # ------------------------------------------------------------------ #

    def wait(self, timeout: float) -> CallbackResult:
        """Block for the redirect. See :meth:`CallbackSlot.wait`."""
        return self.slot.wait(timeout)

    def cancel(self) -> None:
        """Abort a pending :meth:`wait` with :class:`LoginCancelledError`."""
        self.slot.close()

    def state_matches(self, state: Optional[str]) -> bool:
        if self.expected_state is None:
            return True
        if state is None:
            return False
        return hmac.compare_digest(state.encode("utf-8"), self.expected_state.encode("utf-8"))

    # ------------------------------------------------------------------ #
    # In-flight tracking
    # ------------------------------------------------------------------ #

    def _request_started(self) -> None:
        with self._idle:
            self._in_flight += 1

    def _request_finished(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight <= 0:
                self._idle.notify_all()

    def _drain(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    debug(f"Closing callback listener with {self._in_flight} request(s) in flight")
                    return
                self._idle.wait(remaining)
