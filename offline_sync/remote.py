"""
Remote store boundary.

A RemoteStore replays one queued operation and classifies the outcome:
- success, with the remote's authoritative entity when it returns one
- TransportError: transient, the operation should be retried later
- RemoteRejectedError: terminal, retrying can never succeed
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp

from .exceptions import RemoteRejectedError, TransportError
from .oplog import HttpMethod, QueuedOperation

logger = logging.getLogger(__name__)

# Statuses worth retrying. Every 5xx is treated as transient as well.
# 401 is included so an expired sign-in does not discard queued work.
DEFAULT_RETRYABLE_STATUS_CODES: tuple[int, ...] = (401, 408, 425, 429)


@dataclass
class RemoteResponse:
    """Successful outcome of replaying an operation."""

    status: int = 200
    entity: dict[str, Any] | None = None


class RemoteStore(ABC):
    """Abstract remote durable store."""

    @abstractmethod
    async def send(self, operation: QueuedOperation) -> RemoteResponse:
        """Replay an operation against the remote store.

        Raises:
            TransportError: On transient failures
            RemoteRejectedError: When the store rejects the mutation
        """

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by the store."""


class HttpRemoteStore(RemoteStore):
    """Remote store reached over HTTP with aiohttp.

    Example:
        >>> store = HttpRemoteStore("https://notes.example.com", timeout_s=10)
        >>> response = await store.send(operation)
        >>> await store.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        headers: dict[str, str] | None = None,
        retryable_status_codes: tuple[int, ...] = DEFAULT_RETRYABLE_STATUS_CODES,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the HTTP remote store.

        Args:
            base_url: Prefix joined with each operation's endpoint
            timeout_s: Total timeout for a single request
            headers: Extra headers sent with every request
            retryable_status_codes: Non-5xx statuses treated as transient
            session: Existing aiohttp session to use (not closed by close())
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.retryable_status_codes = retryable_status_codes
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
                headers=self.headers,
            )
            self._owns_session = True
        return self._session

    def url_for(self, endpoint: str) -> str:
        """Resolve an endpoint against the base URL."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def is_transient(self, status: int) -> bool:
        """Check whether a failed HTTP status is worth retrying."""
        return status >= 500 or status in self.retryable_status_codes

    async def send(self, operation: QueuedOperation) -> RemoteResponse:
        session = self._get_session()
        url = self.url_for(operation.endpoint)
        body = None if operation.payload is None else json.dumps(operation.payload)

        try:
            async with session.request(operation.method.value, url, data=body) as response:
                status = response.status
                raw = await response.read()
                charset = response.charset
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"{operation.method.value} {url} failed: {e!r}")
            raise TransportError(operation.endpoint, cause=e) from e

        parsed = _parse_body(_decode_body(raw, charset))

        if 200 <= status < 300:
            entity = None
            if operation.method != HttpMethod.DELETE and isinstance(parsed, dict):
                entity = parsed
            return RemoteResponse(status=status, entity=entity)

        if self.is_transient(status):
            raise TransportError(operation.endpoint, status=status)

        raise RemoteRejectedError(operation.endpoint, status=status, reason=_error_reason(parsed))

    async def close(self) -> None:
        """Close the underlying HTTP session if this store created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


def _decode_body(raw: bytes, charset: str | None) -> str:
    # Never raises: unknown charsets fall back to UTF-8, bad bytes become U+FFFD.
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def _parse_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _error_reason(body: Any) -> str | None:
    if isinstance(body, dict):
        reason = body.get("error") or body.get("message")
        return str(reason) if reason else None
    if isinstance(body, str) and body:
        return body[:200]
    return None
