"""Canonical Pydantic models shared across all anitrack modules.

The models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`OAuthSettings` and :class:`AppConfig`, plus the runtime-only
    :class:`ClientCredentials`.

**Login flow records** -- created and owned by a single
:class:`~anitrack.auth.flow.LoginFlow`:
    :class:`PKCEPair`, :class:`AuthorizationRequest`, :class:`CallbackResult`,
    and the persisted :class:`TokenRecord`.

**API response models** -- decoded from the MyAnimeList v2 API:
    :class:`Anime`, :class:`ListStatus`, :class:`AnimeListEntry`,
    :class:`Paging`, and :class:`AnimePage`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Configuration ---


class OAuthSettings(BaseModel):
    """Provider endpoints and local listener settings for the login flow.

    Defaults target MyAnimeList, which only accepts the ``plain`` PKCE
    method and a redirect URI registered with the client application.

    Example::

        OAuthSettings(callback_port=8765, callback_timeout=60)
    """

    authorization_url: str = "https://myanimelist.net/v1/oauth2/authorize"
    token_url: str = "https://myanimelist.net/v1/oauth2/token"
    scopes: list[str] = Field(default_factory=lambda: ["read"])
    callback_host: str = Field(
        default="localhost", description="Host name used in the redirect URI"
    )
    bind_address: str = Field(
        default="127.0.0.1", description="Interface the callback listener binds to"
    )
    callback_port: int = Field(default=9999, ge=1, le=65535)
    callback_path: str = "/oauth/callback"
    callback_timeout: float = Field(
        default=300.0, gt=0, description="Seconds to wait for the browser redirect"
    )
    shutdown_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to drain in-flight callback responses"
    )
    exchange_timeout: float = Field(
        default=30.0, gt=0, description="Token endpoint request timeout in seconds"
    )
    code_challenge_method: str = Field(
        default="plain", description="PKCE transform: plain or S256"
    )
    credential_path: Optional[str] = Field(
        default=None, description="Override for the credential file (default ~/.anitrack.conf)"
    )

    @field_validator("callback_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    @property
    def redirect_uri(self) -> str:
        """The redirect URI registered with the provider."""
        return f"http://{self.callback_host}:{self.callback_port}{self.callback_path}"

    @property
    def scope(self) -> str:
        """Scopes joined the way the authorize endpoint expects them."""
        return " ".join(self.scopes)


class AppConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/anitrack/config.json``.

    Loaded and saved by :func:`~anitrack.config.load_config` and
    :func:`~anitrack.config.save_config`.
    """

    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    client_id_source: Optional[str] = Field(
        default=None, description="Client id source: env:VAR or file:/path"
    )
    client_secret_source: Optional[str] = Field(
        default=None, description="Client secret source: env:VAR or file:/path"
    )
    api_base_url: str = "https://api.myanimelist.net/v2/"
    request_timeout: int = Field(default=30, description="API request timeout in seconds")
    max_retries: int = Field(default=2, description="Retries on 5xx and network errors")


class ClientCredentials(BaseModel):
    """OAuth client identity resolved at login time. Never persisted."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str = ""


# --- Login flow records ---


class PKCEPair(BaseModel):
    """A code verifier and the challenge derived from it with ``method``."""

    model_config = ConfigDict(frozen=True)

    verifier: str
    challenge: str
    method: str


class AuthorizationRequest(BaseModel):
    """Parameters sent to the authorize endpoint for one flow."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    redirect_uri: str
    scope: str
    state: str
    code_challenge: str
    code_challenge_method: str


class CallbackResult(BaseModel):
    """What the provider's redirect carried: a code, or an error."""

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    state: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.code)


# Zero timestamp that older credential files carry for an unset expiry.
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class TokenRecord(BaseModel):
    """The credential produced by a login and stored on disk.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Refresh token, when the provider issued one.
        expiry: Absolute UTC expiry of the access token, when known.
    """

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    @field_validator("refresh_token", mode="before")
    @classmethod
    def _empty_refresh_is_absent(cls, value: Any) -> Any:
        if value == "":
            return None
        return value

    @field_validator("expiry")
    @classmethod
    def _normalise_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value <= _ZERO_TIME:
            return None
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when ``expiry`` is known and has passed."""
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry


# --- API responses ---


class Anime(BaseModel):
    """An anime node as returned inside list responses."""

    model_config = ConfigDict(extra="allow")

    id: int
    title: str


class ListStatus(BaseModel):
    """A user's progress on one anime (``fields=list_status``)."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    score: Optional[int] = None
    num_episodes_watched: Optional[int] = None


class AnimeListEntry(BaseModel):
    """One row of a search result or a user's list."""

    model_config = ConfigDict(extra="allow")

    node: Anime
    list_status: Optional[ListStatus] = None


class Paging(BaseModel):
    previous: Optional[str] = None
    next: Optional[str] = None


class AnimePage(BaseModel):
    """A page of :class:`AnimeListEntry` rows."""

    data: list[AnimeListEntry] = Field(default_factory=list)
    paging: Paging = Field(default_factory=Paging)
