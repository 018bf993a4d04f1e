"""Shared httpx client construction and retry policy for outbound calls."""

from __future__ import annotations

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

# Connection-level failures worth another attempt.
NETWORK_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)
RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


def build_client(
    base_url: str = "",
    *,
    headers: dict[str, str] | None = None,
    read_timeout: float = 30.0,
    max_connections: int = 10,
) -> httpx.Client:
    """One client per collaborator, reused across calls."""
    return httpx.Client(
        base_url=base_url,
        headers=headers,
        timeout=httpx.Timeout(read_timeout, connect=5.0),
        limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections // 2),
        follow_redirects=True,
    )


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, NETWORK_ERRORS):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS


def transient_retry(attempts: int = 3, max_wait: float = 4.0):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=0.25, max=max_wait),
        retry=retry_if_exception(is_transient),
    )
