"""anitrack -- track anime from the terminal with a MyAnimeList login.

``anitrack login`` runs an OAuth2 Authorization Code + PKCE flow: a local
HTTP listener catches the browser redirect, the code is exchanged for tokens,
and the token record is stored in ``~/.anitrack.conf``. ``anitrack search``
and ``anitrack userlist`` then call the MyAnimeList v2 API with that token.

Typical workflow::

    anitrack login --client-id <id>
    anitrack search "cowboy bebop" --limit 3
    anitrack userlist some_user

Modules:
    app: Typer application and CLI entry point.
    auth: PKCE, callback listener, login flow, token exchange, credential store.
    client: MyAnimeList REST client.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and credential resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
