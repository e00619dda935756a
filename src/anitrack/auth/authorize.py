"""Authorization request construction.

:func:`build_authorization_url` is pure: it only percent-encodes the
request's fields onto the provider's authorize endpoint.
"""

from __future__ import annotations

import secrets
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from anitrack.models import AuthorizationRequest, ClientCredentials, OAuthSettings, PKCEPair


def new_state() -> str:
    """Return a fresh URL-safe ``state`` value for CSRF protection."""
    return secrets.token_urlsafe(32)


def make_authorization_request(
    settings: OAuthSettings,
    credentials: ClientCredentials,
    pkce: PKCEPair,
    state: str,
) -> AuthorizationRequest:
    """Assemble the :class:`~anitrack.models.AuthorizationRequest` for one flow."""
    return AuthorizationRequest(
        client_id=credentials.client_id,
        redirect_uri=settings.redirect_uri,
        scope=settings.scope,
        state=state,
        code_challenge=pkce.challenge,
        code_challenge_method=pkce.method,
    )


def build_authorization_url(authorize_endpoint: str, request: AuthorizationRequest) -> str:
    """Return the browser-navigable authorization URL.

    Query parameters already present on *authorize_endpoint* are kept and the
    request's parameters are appended after them. An empty scope is omitted.

    Example::

        >>> build_authorization_url("https://example.com/authorize", request)
        'https://example.com/authorize?response_type=code&client_id=...'
    """
    params: list[tuple[str, str]] = [
        ("response_type", "code"),
        ("client_id", request.client_id),
        ("redirect_uri", request.redirect_uri),
    ]
    if request.scope:
        params.append(("scope", request.scope))
    params += [
        ("state", request.state),
        ("code_challenge", request.code_challenge),
        ("code_challenge_method", request.code_challenge_method),
    ]

    parts = urlsplit(authorize_endpoint)
    existing = parse_qsl(parts.query, keep_blank_values=True)
    query = urlencode(existing + params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
