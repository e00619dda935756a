"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~anitrack.exceptions.AnitrackError` subclass.
Shell wrappers can inspect the exit code to tell a failed login apart from a
failed API call without parsing stderr.

Example::

    $ anitrack search "cowboy bebop"
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no stored credential, run `anitrack login`
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Login failed, or no usable credential is stored."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The remote API returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The user interrupted the command (Ctrl-C)."""
