"""OAuth2 Authorization Code + PKCE login for anitrack.

The main entry points are:

- :class:`LoginFlow` -- runs one login: listener, browser, exchange, persist.
- :class:`CallbackListener` -- the local redirect endpoint and its one-shot
  rendezvous.
- :class:`CredentialStore` -- the on-disk token record.

Typical usage::

    from anitrack.auth import CredentialStore, LoginFlow

    record = LoginFlow(settings, credentials, CredentialStore()).login()
"""

from anitrack.auth.callback import CallbackListener, CallbackSlot
from anitrack.auth.credential_store import CredentialStore, read_record, write_record
from anitrack.auth.exchange import exchange_code
from anitrack.auth.flow import FlowState, LoginFlow
from anitrack.auth.pkce import derive_challenge, generate_pkce_pair

__all__ = [
    "CallbackListener",
    "CallbackSlot",
    "CredentialStore",
    "FlowState",
    "LoginFlow",
    "derive_challenge",
    "exchange_code",
    "generate_pkce_pair",
    "read_record",
    "write_record",
]
