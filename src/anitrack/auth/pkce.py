"""PKCE (:rfc:`7636`) verifier and challenge generation.

A fresh :class:`~anitrack.models.PKCEPair` is generated for every login
attempt and dropped once its token exchange has finished. MyAnimeList only
supports the ``plain`` method, where the challenge is the verifier itself;
``S256`` is available for providers that support it.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from anitrack.exceptions import PKCEError
from anitrack.models import PKCEPair

PLAIN = "plain"
S256 = "S256"
SUPPORTED_METHODS = (PLAIN, S256)

_VERIFIER_BYTES = 64


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def derive_challenge(verifier: str, method: str = PLAIN) -> str:
    """Return the code challenge for *verifier* under *method*.

    Raises:
        PKCEError: If *method* is not ``plain`` or ``S256``.
    """
    if method == PLAIN:
        return verifier
    if method == S256:
        return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    raise PKCEError(
        f"Unsupported code_challenge_method '{method}': "
        f"must be one of {', '.join(SUPPORTED_METHODS)}"
    )


def generate_pkce_pair(method: str = PLAIN) -> PKCEPair:
    """Generate a code verifier and its challenge.

    The verifier is 64 random bytes, base64url-encoded without padding
    (86 characters, inside the 43-128 range RFC 7636 requires).

    Raises:
        PKCEError: If the method is unknown or the system has no secure
            random source.
    """
    # Fail on a bad method before consuming entropy.
    derive_challenge("", method)
    try:
        raw = secrets.token_bytes(_VERIFIER_BYTES)
    except (NotImplementedError, OSError) as exc:
        raise PKCEError(f"No secure random source available: {exc}") from exc
    verifier = _b64url(raw)
    return PKCEPair(
        verifier=verifier,
        challenge=derive_challenge(verifier, method),
        method=method,
    )
