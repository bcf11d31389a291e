"""Shared process-wide clients."""
from typing import Dict, Optional

import httpx
from openai import AsyncOpenAI

_http_client: Optional[httpx.AsyncClient] = None
# One OpenAI client per API key
_openai_clients: Dict[str, AsyncOpenAI] = {}


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client (connection pool reused across calls)."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    return _http_client


def get_openai_client(api_key: Optional[str]) -> Optional[AsyncOpenAI]:
    """Get the shared OpenAI client for ``api_key``, or None when no key is configured."""
    if not api_key:
        return None
    client = _openai_clients.get(api_key)
    if client is None:
        client = AsyncOpenAI(api_key=api_key)
        _openai_clients[api_key] = client
    return client


async def close_clients() -> None:
    """Close shared clients on shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
    for client in list(_openai_clients.values()):
        await client.close()
    _openai_clients.clear()
