"""
Paged package search against a feed's search query service.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from feed_manager.domain.entities import package_from_search_hit, search_hits
from feed_manager.domain.errors import FeedError, OperationCancelledError
from feed_manager.domain.models import (
    FeedEndpoints,
    OrderBy,
    Package,
    SearchOptions,
    SearchResult,
    VersionListOptions,
)
from feed_manager.services.feed_client import DEFAULT_TIMEOUT, FeedService, run_cancellable
from feed_manager.services.versions import VersionAggregator

logger = logging.getLogger(__name__)

# Largest ``take`` feeds accept per search request.
MAX_PAGE_SIZE = 100
# Pause between consecutive page requests to stay under feed rate limits.
DEFAULT_PAGE_DELAY = 0.1


class PackageSearchPaginator(FeedService):
    """
    Collects search results page by page up to a requested count.

    Pages are fetched strictly one after another in increasing offset order,
    with a fixed pause between requests. Paging stops once enough packages
    were collected, or as soon as a page comes back shorter than requested.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_size: int = MAX_PAGE_SIZE,
        page_delay: float = DEFAULT_PAGE_DELAY,
        version_aggregator: Optional[VersionAggregator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        self.page_delay = page_delay
        self.version_aggregator = version_aggregator or VersionAggregator(timeout=timeout, transport=transport)
        self._sleep = sleep

    def _params(self, query: str, skip: int, take: int, options: SearchOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "q": query or "",
            "skip": skip,
            "take": take,
            "prerelease": "true" if options.include_prerelease else "false",
            "semVerLevel": "2.0.0",
        }
        if options.include_delisted:
            params["includeDelisted"] = "true"
        if options.order_by == OrderBy.ID:
            params["orderBy"] = "id"
        return params

    async def search(
        self,
        endpoints: FeedEndpoints,
        query: str,
        desired_count: int,
        options: Optional[SearchOptions] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SearchResult:
        """
        Search for up to ``desired_count`` packages. An empty query matches all.

        On failure the raised FeedError (or OperationCancelledError) carries
        the packages collected so far in ``partial``.
        """
        options = options or SearchOptions()
        if desired_count <= 0:
            return SearchResult()

        url = endpoints.search_url
        page_size = min(self.page_size, desired_count)
        collected: List[Package] = []
        pages = 0

        logger.info(f"Searching {url} for {query!r} (up to {desired_count} packages)")
        async with self._client() as client:
            while len(collected) < desired_count:
                take = min(page_size, desired_count - len(collected))
                params = self._params(query, pages * page_size, take, options)

                try:
                    if pages > 0:
                        await run_cancellable(self._sleep(self.page_delay), cancel, "Package search")
                    pages += 1
                    document = await self._get_json(client, url, params=params, cancel=cancel, operation="Package search")
                    hits = search_hits(document, url)
                    packages = [
                        package_from_search_hit(hit, url, f"data[{i}]", include_prerelease=options.include_prerelease)
                        for i, hit in enumerate(hits)
                    ]
                except FeedError as e:
                    logger.warning(f"Search page {pages} failed after {len(collected)} package(s): {e.message}")
                    e.partial = list(collected)
                    raise
                except OperationCancelledError as e:
                    logger.info(f"Search cancelled after {len(collected)} package(s)")
                    raise OperationCancelledError("Package search", partial=collected) from e

                collected.extend(packages[:take])
                logger.debug(f"Page {pages}: requested {take}, received {len(hits)}")

                if len(hits) < take:
                    break

        if options.expand_versions:
            collected = await self._expand_versions(endpoints, collected, options, cancel)

        logger.info(f"Search for {query!r} returned {len(collected)} package(s) in {pages} page(s)")
        return SearchResult(packages=collected, pages_requested=pages)

    async def _expand_versions(
        self,
        endpoints: FeedEndpoints,
        packages: List[Package],
        options: SearchOptions,
        cancel: Optional[asyncio.Event],
    ) -> List[Package]:
        version_options = VersionListOptions(
            include_prerelease=options.include_prerelease,
            include_unlisted=options.include_delisted,
        )
        expanded: List[Package] = []
        for index, package in enumerate(packages):
            try:
                versions = await self.version_aggregator.list_versions(endpoints, package.id, version_options, cancel)
            except FeedError as e:
                e.partial = expanded + packages[index:]
                raise
            except OperationCancelledError as e:
                raise OperationCancelledError("Package search", partial=expanded + packages[index:]) from e
            expanded.append(package.with_versions(versions))
        return expanded
