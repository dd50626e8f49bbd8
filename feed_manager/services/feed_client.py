"""
Shared HTTP plumbing for the feed services.

Every service opens a short-lived httpx.AsyncClient per operation, the same
way the rest of the code base talks to remote endpoints. Tests (and callers
that want connection reuse) can inject a transport.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, TypeVar

import httpx

from feed_manager.domain.errors import FeedMalformedError, FeedTransportError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "feed-manager/0.1"


async def run_cancellable(awaitable: Awaitable[T], cancel: Optional[asyncio.Event], operation: str = "Operation") -> T:
    """
    Await ``awaitable`` unless ``cancel`` fires first.

    When the event fires, the in-flight work is cancelled and
    OperationCancelledError is raised. Cancelling the calling task cancels
    the inner work as well.
    """
    if cancel is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if cancel.is_set():
        task.cancel()
        raise OperationCancelledError(operation)

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise OperationCancelledError(operation)


class FeedService:
    """Base class holding HTTP settings for one feed-facing service."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

    def _client(self, headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
            headers={"User-Agent": USER_AGENT, **(headers or {})},
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        cancel: Optional[asyncio.Event] = None,
        not_found_ok: bool = False,
        operation: str = "Request",
    ) -> Any:
        """
        GET a JSON document.

        Returns None for a 404 when ``not_found_ok`` is set. Transport
        problems and error statuses raise FeedTransportError; an unparsable
        body raises FeedMalformedError.
        """
        logger.debug(f"GET {url} params={params}")
        try:
            response = await run_cancellable(client.get(url, params=params), cancel, operation)
        except httpx.HTTPError as e:
            logger.warning(f"Request to {url} failed: {e}")
            raise FeedTransportError(url, str(e) or e.__class__.__name__) from e

        if response.status_code == 404 and not_found_ok:
            logger.debug(f"{url} returned 404")
            return None

        if response.is_error:
            reason = f"HTTP {response.status_code} {response.reason_phrase}".strip()
            logger.warning(f"Request to {url} failed: {reason}")
            raise FeedTransportError(str(response.url), reason, http_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise FeedMalformedError(str(response.url), f"invalid JSON ({e})") from e
