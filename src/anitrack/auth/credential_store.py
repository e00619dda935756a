"""Persistent store for the single login credential.

Holds exactly one :class:`~anitrack.models.TokenRecord` in a JSON file at a
fixed per-user location (``~/.anitrack.conf`` unless configured otherwise).
Writes go through :func:`~anitrack.config.atomic_write`: a temp file in the
same directory, ``0o600`` permissions set before any content is written,
``fsync``, then ``os.replace``. A crash or a failed write therefore leaves
either the old file or the new one at the canonical path, never a mix.

See Also:
    :class:`~anitrack.auth.flow.LoginFlow` -- the only writer.
    :class:`~anitrack.client.MalClient` -- reads the bearer token.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from anitrack.config import atomic_write, get_token_file_path
from anitrack.exceptions import CorruptRecordError, CredentialNotFoundError, CredentialWriteError
from anitrack.models import TokenRecord

_FILE_MODE = 0o600


def write_record(record: TokenRecord, path: Path) -> None:
    """Serialise *record* to *path*, replacing any existing file atomically.

    Raises:
        CredentialWriteError: If the file cannot be written. Any previous
            file at *path* is left intact.
    """
    data = record.model_dump(mode="json")
    text = json.dumps(data, indent=2) + "\n"
    try:
        atomic_write(path, text, mode=_FILE_MODE)
    except OSError as exc:
        raise CredentialWriteError(f"Cannot write credentials to {path}: {exc}") from exc


def read_record(path: Path) -> TokenRecord:
    """Load the :class:`~anitrack.models.TokenRecord` stored at *path*.

    Raises:
        CredentialNotFoundError: If no file exists.
        CorruptRecordError: If the file cannot be read or parsed, or has no
            usable access token.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CredentialNotFoundError(
            f"No stored credentials at {path}; run `anitrack login` first"
        ) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise CorruptRecordError(f"Cannot read credentials at {path}: {exc}") from exc

    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return TokenRecord.model_validate(data)
    except (json.JSONDecodeError, ValidationError, ValueError) as exc:
        raise CorruptRecordError(
            f"Stored credentials at {path} are corrupt; run `anitrack login` again ({exc})"
        ) from exc


class CredentialStore:
    """Read/write the credential file.

    Args:
        path: Credential file location. Defaults to
            :func:`~anitrack.config.get_token_file_path`.

    Example::

        store = CredentialStore(tmp_path / "creds.json")
        store.save(TokenRecord(access_token="tok_1"))
        assert store.load().access_token == "tok_1"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else get_token_file_path()

    @property
    def path(self) -> Path:
        """The filesystem path to the credential file."""
        return self._path

    def save(self, record: TokenRecord) -> None:
        """Persist *record*, replacing the previous one in full."""
        write_record(record, self._path)

    def load(self) -> TokenRecord:
        """Return the stored record. See :func:`read_record`."""
        return read_record(self._path)

    def exists(self) -> bool:
        return self._path.is_file()

    def bearer_token(self) -> str:
        """Return just the access token, for ``Authorization: Bearer`` headers."""
        return self.load().access_token

    def clear(self) -> bool:
        """Delete the credential file. Returns ``False`` if there was none."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        return True
