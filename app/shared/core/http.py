"""
Shared async HTTP client.

One httpx.AsyncClient per process, opened in the app lifespan and reused by
outbound transports (approver notification webhooks) to avoid socket churn.
"""

from typing import Optional

import httpx
import structlog

logger = structlog.get_logger()

_client: Optional[httpx.AsyncClient] = None


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(20.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        headers={"User-Agent": "Auditvault-Deletion/0.1"},
    )


def get_http_client() -> httpx.AsyncClient:
    """Return the shared client, creating it lazily outside the app lifespan."""
    global _client
    if _client is None or _client.is_closed:
        logger.warning("http_client_lazy_initialized")
        _client = _build_client()
    return _client


async def init_http_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        logger.warning("http_client_already_initialized")
        return
    _client = _build_client()
    logger.info("http_client_initialized")


async def close_http_client() -> None:
    global _client
    if _client is None:
        return
    client, _client = _client, None
    await client.aclose()
    logger.info("http_client_closed")
