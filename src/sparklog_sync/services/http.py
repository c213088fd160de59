"""Shared httpx plumbing for the remote store and build pipeline clients."""
import json
import time
from typing import Dict, Optional

import httpx

from sparklog_sync import __version__
from sparklog_sync.exceptions import (
    ErrorCode,
    RateLimitedError,
    RemoteStoreError,
    VersionConflictError,
)

GITHUB_ACCEPT = "application/vnd.github.v3+json"


def api_headers(
    token: Optional[str] = None, user_agent: Optional[str] = None
) -> Dict[str, str]:
    """Default headers for the remote store API."""
    headers = {
        "Accept": GITHUB_ACCEPT,
        "User-Agent": user_agent or f"sparklog-sync/{__version__}",
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def create_async_client(
    base_url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient``; ``transport`` lets tests inject a mock."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers or {},
        timeout=timeout,
        transport=transport,
    )


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Seconds to wait according to ``Retry-After`` or ``X-RateLimit-Reset``."""
    retry_after = response.headers.get("Retry-After")
    if retry_after and retry_after.isdigit():
        return float(retry_after)
    reset = response.headers.get("X-RateLimit-Reset")
    if reset and reset.isdigit():
        return max(0.0, float(reset) - time.time())
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        payload = {}
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and response.headers.get("X-RateLimit-Remaining") == "0"
    )


def error_from_response(
    response: httpx.Response,
    operation: str,
    path: Optional[str] = None,
    version_token: Optional[str] = None,
) -> RemoteStoreError:
    """Map a failed remote store response onto the exception hierarchy.

    409 and 422 on a write mean the supplied version token is stale (or
    missing for an existing file).
    """
    message = _error_message(response)
    status = response.status_code

    if is_rate_limited(response):
        return RateLimitedError(
            f"Rate limited during {operation}: {message}",
            operation=operation,
            path=path,
            status_code=status,
            retry_after=retry_after_seconds(response),
        )
    if status in (409, 422) and operation in ("create", "update", "delete"):
        return VersionConflictError(
            path or "", version_token, status_code=status, operation=operation
        )
    if status == 404:
        return RemoteStoreError(
            f"Not found during {operation}: {message}",
            operation=operation,
            path=path,
            status_code=status,
            code=ErrorCode.REMOTE_NOT_FOUND,
        )
    return RemoteStoreError(
        f"Remote store error during {operation}: {status} - {message}",
        operation=operation,
        path=path,
        status_code=status,
    )
