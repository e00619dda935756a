"""HTTP client for the MyAnimeList v2 API.

:class:`MalClient` wraps :class:`httpx.Client` with bearer-token injection
from the credential store, retry with exponential backoff and typed error
mapping. Use it as a context manager::

    from anitrack.client import MalClient

    with MalClient(config) as client:
        page = client.search_anime("cowboy bebop", limit=3)
"""

from anitrack.client.api import MalClient

__all__ = ["MalClient"]
