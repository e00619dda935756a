"""Synchronous MyAnimeList API client with bearer auth and retry.

This module provides :class:`MalClient`, the blocking client used by the
``search`` and ``userlist`` commands. It wraps :class:`httpx.Client` and
layers on:

- **Auth injection** -- the access token from the
  :class:`~anitrack.auth.credential_store.CredentialStore` is sent as
  ``Authorization: Bearer <token>`` on every request.
- **Retry with backoff** -- retries on 5xx and network errors with
  exponential delay (1 s, 2 s, 4 s, ...).
- **Error mapping** -- 401/403, 404, 5xx and transport failures become
  :class:`~anitrack.exceptions.AuthError`,
  :class:`~anitrack.exceptions.NotFoundError`,
  :class:`~anitrack.exceptions.ServerError` and
  :class:`~anitrack.exceptions.ConnectionError_`.
"""

from __future__ import annotations

import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from anitrack.auth.credential_store import CredentialStore
from anitrack.config import get_token_file_path
from anitrack.exceptions import AuthError, ConnectionError_, NotFoundError, ServerError
from anitrack.models import AnimePage, AppConfig
from anitrack.output import get_output


class MalClient:
    """Synchronous client for the MyAnimeList v2 API.

    Must be used as a context manager so that the stored token is read and
    the underlying transport is opened and closed.

    Args:
        config: Application config supplying ``api_base_url``,
            ``request_timeout`` and ``max_retries``.
        store: Credential store holding the access token. Defaults to the
            store at the configured credential path.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).

    Example::

        with MalClient(config) as client:
            page = client.get_user_anime_list("some_user", limit=5)
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[CredentialStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> MalClient:
        if self._store is None:
            self._store = CredentialStore(get_token_file_path(self._config))
        # Raises CredentialNotFoundError / CorruptRecordError before any traffic.
        token = self._store.bearer_token()
        self._client = httpx.Client(
            base_url=self._config.api_base_url,
            timeout=self._config.request_timeout,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {token}",
            },
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # API operations
    # ------------------------------------------------------------------ #

    def search_anime(self, query: str, limit: int = 5) -> AnimePage:
        """Search anime by title (``GET anime?q=...&limit=...``)."""
        response = self.get("anime", params={"q": query, "limit": limit})
        return self._parse_page(response)

    def get_user_anime_list(self, username: str, limit: int = 5) -> AnimePage:
        """Fetch a user's anime list with each entry's ``list_status``."""
        path = f"users/{quote(username, safe='@')}/animelist"
        response = self.get(path, params={"fields": "list_status", "limit": limit})
        return self._parse_page(response)

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        """Send a GET request with retry and error mapping.

        Raises:
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On 5xx after all retries, or any other 4xx.
            ConnectionError_: On network / timeout errors after all retries.
        """
        response = self._execute_with_retry("GET", path, params or {})
        self._map_response_error(response)
        return response

    def _execute_with_retry(
        self, method: str, path: str, params: dict[str, Any]
    ) -> httpx.Response:
        """Execute the request, retrying 5xx and network errors with backoff."""
        assert self._client is not None, "Client not initialised -- use as context manager"

        max_retries = self._config.max_retries
        output = get_output()

        for attempt in range(max_retries + 1):
            try:
                output.debug(f"{method} {path} {params}")
                response = self._client.request(method, path, params=params)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    output.debug(
                        f"Connection error: {exc}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(delay)
                    continue
                raise ConnectionError_(
                    f"Connection failed after {max_retries + 1} attempts: {exc}"
                ) from exc

            if response.status_code >= 500 and attempt < max_retries:
                delay = 2 ** attempt
                output.debug(
                    f"Server error {response.status_code}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                time.sleep(delay)
                continue
            return response

        raise ServerError("Request failed after all retries")  # pragma: no cover

    @staticmethod
    def _map_response_error(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("message") or detail.get("error") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"HTTP {status}: {msg}" if msg else f"HTTP {status}"

        if status in (401, 403):
            raise AuthError(f"{full_msg} (try `anitrack login` again)")
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)

    @staticmethod
    def _parse_page(response: httpx.Response) -> AnimePage:
        try:
            return AnimePage.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ServerError(f"Unexpected response from the API: {exc}") from exc
