"""Auth commands -- log in to MyAnimeList and manage the stored token.

Typical workflow::

    anitrack login --client-id <id>   # browser login, token saved
    anitrack status                   # show the stored token
    anitrack logout                   # delete it
"""

from __future__ import annotations

from typing import Optional

import typer

from anitrack.exceptions import AnitrackError, CredentialNotFoundError
from anitrack.output import OutputFormat, error, get_output, info, print_json, success, suggest


def _fail(exc: AnitrackError) -> typer.Exit:
    error(str(exc))
    return typer.Exit(code=exc.exit_code)


def login_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="MyAnimeList API client ID."
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="MyAnimeList API client secret, if the app has one."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Only print the login URL; don't open a browser."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=1, help="Seconds to wait for the browser redirect."
    ),
) -> None:
    """Log in to MyAnimeList in the browser and store the access token.

    Starts a local listener on the configured redirect port, prints the
    authorization URL (and opens it unless ``--no-browser``), waits for the
    redirect, exchanges the code and writes the token record to the
    credential file.

    Example::

        anitrack login --client-id 0123abcd
    """
    from anitrack.auth import CredentialStore, LoginFlow
    from anitrack.config import get_token_file_path, load_config, resolve_client_credentials

    try:
        config = load_config()
        settings = config.oauth
        if timeout is not None:
            settings = settings.model_copy(update={"callback_timeout": timeout})
        credentials = resolve_client_credentials(config, client_id, client_secret)
        store = CredentialStore(get_token_file_path(config))

        flow = LoginFlow(settings, credentials, store, open_browser=not no_browser)
        info(f"Waiting for the browser redirect on {settings.redirect_uri}")
        record = flow.login()
    except AnitrackError as exc:
        raise _fail(exc) from None

    success("Logged in to MyAnimeList.")
    info(f"Credentials saved to {store.path}")
    if record.expiry is not None:
        info(f"Access token expires {record.expiry.isoformat()}")
    suggest('Try: anitrack search "cowboy bebop"')


def logout_command() -> None:
    """Delete the stored credential file."""
    from anitrack.auth import CredentialStore
    from anitrack.config import get_token_file_path, load_config

    try:
        store = CredentialStore(get_token_file_path(load_config()))
    except AnitrackError as exc:
        raise _fail(exc) from None

    if store.clear():
        success(f"Removed credentials at {store.path}")
    else:
        info("Not logged in; nothing to remove.")


def status_command() -> None:
    """Show whether a usable token is stored and when it expires."""
    from anitrack.auth import CredentialStore
    from anitrack.config import get_token_file_path, load_config

    try:
        store = CredentialStore(get_token_file_path(load_config()))
        record = store.load()
    except CredentialNotFoundError:
        info("Not logged in.")
        suggest("Log in: anitrack login")
        raise typer.Exit(code=CredentialNotFoundError.exit_code) from None
    except AnitrackError as exc:
        raise _fail(exc) from None

    expired = record.is_expired()
    if get_output().format == OutputFormat.JSON:
        print_json(
            {
                "path": str(store.path),
                "has_refresh_token": record.refresh_token is not None,
                "expiry": record.expiry.isoformat() if record.expiry else None,
                "expired": expired,
            }
        )
        return

    info(f"Credentials: {store.path}")
    if record.expiry is None:
        info("Access token: stored (no expiry recorded)")
    elif expired:
        error(f"Access token expired {record.expiry.isoformat()}")
        suggest("Log in again: anitrack login")
    else:
        success(f"Access token valid until {record.expiry.isoformat()}")
