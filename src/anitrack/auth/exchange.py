"""Authorization code to token exchange.

:func:`exchange_code` sends a single form-encoded POST to the provider's
token endpoint with the canonical ``authorization_code`` grant parameters and
the PKCE ``code_verifier``. There are no retries: the provider consumes the
code on first use whatever the outcome, so a failed exchange means starting
the login again.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from anitrack.exceptions import MalformedResponseError, TokenExchangeError
from anitrack.models import TokenRecord
from anitrack.output import debug

# Longest body excerpt carried in an error message.
_BODY_EXCERPT = 500


def exchange_code(
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    verifier: str,
    timeout: float = 30.0,
) -> TokenRecord:
    """Exchange an authorization code for a :class:`~anitrack.models.TokenRecord`.

    Args:
        token_url: The provider's token endpoint.
        client_id: OAuth client identifier.
        client_secret: OAuth client secret. Omitted from the form when empty.
        code: The authorization code received on the callback.
        redirect_uri: The redirect URI used in the authorization request.
        verifier: The PKCE code verifier matching the challenge that was sent.
        timeout: Request timeout in seconds.

    Returns:
        The token record parsed from the response.

    Raises:
        TokenExchangeError: On a non-2xx response (``status`` and ``body``
            set) or a transport failure (``status`` is ``None``).
        MalformedResponseError: If the body is not a JSON object with a
            string ``access_token``.
    """
    data: dict[str, str] = {
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": verifier,
        "grant_type": "authorization_code",
    }
    if client_secret:
        data["client_secret"] = client_secret

    debug(f"POST {token_url} (grant_type=authorization_code)")
    try:
        response = httpx.post(
            token_url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token exchange failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        body = response.text
        excerpt = body[:_BODY_EXCERPT]
        raise TokenExchangeError(
            f"Token exchange failed with status {response.status_code}: {excerpt}",
            status=response.status_code,
            body=body,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise MalformedResponseError(
            f"Token response is not valid JSON: {exc}"
        ) from exc

    return parse_token_response(payload)


def parse_token_response(
    payload: Any, now: Optional[datetime] = None
) -> TokenRecord:
    """Build a :class:`~anitrack.models.TokenRecord` from a token endpoint body.

    ``expires_in`` (seconds) is turned into an absolute UTC ``expiry``.

    Raises:
        MalformedResponseError: If *payload* is not an object or lacks a
            non-empty string ``access_token``.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError("Token response is not a JSON object")

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise MalformedResponseError("Token response missing 'access_token' field")

    refresh_token = payload.get("refresh_token")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise MalformedResponseError("Token response has a non-string 'refresh_token'")

    expiry: Optional[datetime] = None
    expires_in = payload.get("expires_in")
    if expires_in is not None:
        invalid = f"Token response has an invalid 'expires_in': {expires_in!r}"
        try:
            seconds = float(expires_in)
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedResponseError(invalid) from exc
        if not math.isfinite(seconds):
            raise MalformedResponseError(invalid)
        now = now or datetime.now(timezone.utc)
        try:
            expiry = now + timedelta(seconds=seconds)
        except (OverflowError, ValueError) as exc:
            raise MalformedResponseError(invalid) from exc

    try:
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
        )
    except ValidationError as exc:
        raise MalformedResponseError(f"Token response is not a usable token: {exc}") from exc
