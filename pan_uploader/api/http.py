"""
HTTP Wrapper for the Open Platform

Design Decision: HTTP Client
============================

Options Considered:
1. requests - Simple, but blocks the event loop
2. aiohttp - Async, session management is more manual
3. httpx - Async client, streaming request bodies, pluggable transports

Decision: httpx.AsyncClient
- Chunk bodies can be streamed from an async generator, which gives
  byte-level upload progress without a custom transport
- Transports can be swapped for httpx.MockTransport in tests

Every JSON answer is wrapped in an envelope:

    {"code": 0, "message": "ok", "data": {...}, "x-traceID": "..."}

A non-zero code is a rejection and becomes an ApiError carrying the
server's message; callers only ever see the `data` part.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import DEFAULT_API_BASE_URL
from ..exceptions import ApiError

logger = logging.getLogger(__name__)

PLATFORM_HEADERS = {
    'Platform': 'open_platform',
    'Content-Type': 'application/json',
}


def unwrap(response: httpx.Response) -> Any:
    """Return the `data` field of an envelope, raising ApiError on rejection."""
    response.raise_for_status()
    body = response.json()
    code = body.get('code')
    if code != 0:
        raise ApiError(code, body.get('message') or '', body.get('x-traceID'))
    return body.get('data')


class ApiClient:
    """
    Authenticated JSON client for the open platform.

    Usable as an async context manager; closes its connection pool on exit.
    """

    def __init__(self, token: Optional[str] = None,
                 base_url: str = DEFAULT_API_BASE_URL,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = dict(PLATFORM_HEADERS)
        if token:
            headers['Authorization'] = f"Bearer {token}"

        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> 'ApiClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        logger.debug(f"GET {path} {params or ''}")
        response = await self._client.get(path, params=params)
        return unwrap(response)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        logger.debug(f"POST {path}")
        response = await self._client.post(path, json=json)
        return unwrap(response)
