"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent state for anitrack other than the
credential file itself:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.anitrack/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **App config** -- A single :class:`~anitrack.models.AppConfig` JSON file
  holding the OAuth provider settings and where to find the client id and
  secret. ``ANITRACK_CONFIG`` points at an alternative file.
* **Credential file path** -- :func:`get_token_file_path` resolves the
  fixed per-user credential location (``~/.anitrack.conf``).
* **Client credential resolution** -- :func:`resolve_client_credentials`
  merges CLI flags, environment variables, configured sources, and an
  interactive prompt.

All config writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Optional

from anitrack.exceptions import ConfigError
from anitrack.models import AppConfig, ClientCredentials

_APP_NAME = "anitrack"
_CONFIG_FILENAME = "config.json"
TOKEN_FILE_NAME = ".anitrack.conf"

ENV_CONFIG = "ANITRACK_CONFIG"
ENV_CLIENT_ID = "ANITRACK_CLIENT_ID"
ENV_CLIENT_SECRET = "ANITRACK_CLIENT_SECRET"


# --- XDG path resolution ---


def _home() -> Path:
    """Return the user's home directory or raise :class:`ConfigError`."""
    try:
        return Path.home()
    except (RuntimeError, KeyError) as exc:
        raise ConfigError(f"Cannot determine home directory: {exc}") from exc


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return _home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = _home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/anitrack/`` (default ``~/.config/anitrack/``).
    On macOS/Windows: ``~/.anitrack/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/anitrack/`` (default ``~/.local/share/anitrack/``).
    On macOS/Windows: ``~/.anitrack/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_token_file_path(config: Optional[AppConfig] = None) -> Path:
    """Return the credential file path.

    ``config.oauth.credential_path`` wins when set; otherwise the file is
    ``~/.anitrack.conf``.

    Raises:
        ConfigError: If the home directory cannot be determined.
    """
    if config is not None and config.oauth.credential_path:
        return Path(config.oauth.credential_path).expanduser()
    return _home() / TOKEN_FILE_NAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is given
    it is applied to the temp file before any content is written, so the
    data is never readable with looser permissions. On any failure the temp
    file is removed and *path* is left as it was.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- App config ---


def config_path() -> Path:
    """Path to the config file, honouring ``ANITRACK_CONFIG``."""
    override = os.environ.get(ENV_CONFIG)
    if override:
        return Path(override).expanduser()
    return get_config_dir() / _CONFIG_FILENAME


def load_config() -> AppConfig:
    """Load the app configuration.

    Returns:
        The deserialised :class:`~anitrack.models.AppConfig`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = config_path()
    if not path.is_file():
        return AppConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return AppConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: AppConfig) -> None:
    """Persist the app configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(config_path(), json.dumps(data, indent=2) + "\n")


# --- Client credential resolution ---


def resolve_source(source: str) -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")


def _prompt(label: str, secret: bool) -> str:
    if not sys.stdin.isatty():
        raise ConfigError(
            f"Cannot prompt for {label}: stdin is not a TTY. "
            f"Set {ENV_CLIENT_ID} / {ENV_CLIENT_SECRET} or pass --client-id."
        )
    if secret:
        return getpass.getpass(f"Enter MAL {label}: ")
    sys.stderr.write(f"Enter MAL {label}: ")
    sys.stderr.flush()
    return sys.stdin.readline().strip()


def _resolve_one(
    cli_value: Optional[str],
    env_var: str,
    source: Optional[str],
    label: str,
    secret: bool,
    optional: bool = False,
) -> str:
    if cli_value:
        return cli_value
    env_value = os.environ.get(env_var)
    if env_value:
        return env_value
    if source:
        return resolve_source(source)
    if optional and not sys.stdin.isatty():
        return ""
    return _prompt(label, secret)


def resolve_client_credentials(
    config: AppConfig,
    cli_client_id: Optional[str] = None,
    cli_client_secret: Optional[str] = None,
) -> ClientCredentials:
    """Resolve the OAuth client id and secret with full precedence.

    Precedence (high to low):
        1. CLI flags (``--client-id``, ``--client-secret``)
        2. Environment variables (``ANITRACK_CLIENT_ID``, ``ANITRACK_CLIENT_SECRET``)
        3. Configured sources (``client_id_source``, ``client_secret_source``)
        4. Interactive prompt (TTY only). Without a TTY a missing secret
           resolves to ``""`` (public clients have none).

    Raises:
        ConfigError: If a value can't be resolved or the client id is empty.
    """
    client_id = _resolve_one(
        cli_client_id, ENV_CLIENT_ID, config.client_id_source, "client ID", secret=False
    )
    if not client_id:
        raise ConfigError("A MyAnimeList client ID is required to log in")
    client_secret = _resolve_one(
        cli_client_secret,
        ENV_CLIENT_SECRET,
        config.client_secret_source,
        "client secret",
        secret=True,
        optional=True,
    )
    return ClientCredentials(client_id=client_id, client_secret=client_secret)
