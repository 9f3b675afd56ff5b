from __future__ import annotations

import contextlib
import ssl

import aiohttp
import certifi

from shared.constants import HTTP_CONNECTION_LIMIT, HTTP_USER_AGENT


def make_http_session(
    *,
    user_agent: str = HTTP_USER_AGENT,
    limit: int = HTTP_CONNECTION_LIMIT,
) -> aiohttp.ClientSession:
    """Session shared by the tile fetchers and the Overpass status monitor.

    Responses are never cached at the HTTP layer: tiles go through the
    persistent tile store and the status page must always be fresh.
    """
    # Trust store from certifi, not the platform bundle
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context, limit=limit)
    return aiohttp.ClientSession(
        connector=connector,
        headers={'User-Agent': user_agent},
    )


def release_response(resp: object) -> None:
    """Close and release a response; works for aiohttp responses and test doubles."""
    with contextlib.suppress(Exception):
        close = getattr(resp, 'close', None)
        if callable(close):
            close()
        release = getattr(resp, 'release', None)
        if callable(release):
            release()

