"""
Fetch every version of a package and normalize them into one ordered list.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import httpx

from feed_manager.domain.entities import (
    filter_versions,
    merge_version_records,
    record_from_catalog_entry,
    records_from_search_hit,
    search_hits,
)
from feed_manager.domain.errors import FeedMalformedError
from feed_manager.domain.feed_utils import join_url
from feed_manager.domain.models import (
    FeedEndpoints,
    PackageVersion,
    RawVersionRecord,
    VersionListOptions,
)
from feed_manager.services.feed_client import FeedService

logger = logging.getLogger(__name__)


class VersionAggregator(FeedService):
    """
    Lists the versions of one package.

    The registrations (metadata) resource is the primary source. Feeds
    without one are served from the package's search hit instead, and the
    search snapshot can be merged in on request. Feeds are expected to
    return all versions of a package at once, so there is no paging here
    beyond expanding registration pages the index does not inline.
    """

    async def list_versions(
        self,
        endpoints: FeedEndpoints,
        package_id: str,
        options: Optional[VersionListOptions] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[PackageVersion]:
        options = options or VersionListOptions()
        records: List[RawVersionRecord] = []

        async with self._client() as client:
            if endpoints.registrations_url:
                records.extend(await self._metadata_records(client, endpoints.registrations_url, package_id, cancel))
            if not endpoints.registrations_url or options.include_search_snapshot:
                records.extend(await self._search_records(client, endpoints.search_url, package_id, cancel))

        versions = filter_versions(
            merge_version_records(records),
            include_prerelease=options.include_prerelease,
            include_unlisted=options.include_unlisted,
        )
        logger.info(f"Found {len(versions)} version(s) of {package_id}")
        return versions

    async def _metadata_records(
        self,
        client: httpx.AsyncClient,
        registrations_url: str,
        package_id: str,
        cancel: Optional[asyncio.Event],
    ) -> List[RawVersionRecord]:
        index_url = join_url(registrations_url, package_id.lower(), "index.json")
        index = await self._get_json(client, index_url, cancel=cancel, not_found_ok=True, operation="Version listing")
        if index is None:
            logger.info(f"Package {package_id} not found in registrations")
            return []
        if not isinstance(index, dict):
            raise FeedMalformedError(index_url, "registration index is not an object")

        pages = index.get("items") or []
        if not isinstance(pages, list):
            raise FeedMalformedError(index_url, "items is not a list")

        records: List[RawVersionRecord] = []
        for p, page in enumerate(pages):
            if not isinstance(page, dict):
                raise FeedMalformedError(index_url, f"items[{p}] is not an object")

            page_url = index_url
            leaves = page.get("items")
            if leaves is None:
                # Large packages: the page is only referenced, fetch it.
                page_url = page.get("@id")
                if not isinstance(page_url, str) or not page_url:
                    raise FeedMalformedError(index_url, f"items[{p}] has neither items nor @id")
                page_doc = await self._get_json(client, page_url, cancel=cancel, operation="Version listing")
                leaves = page_doc.get("items") if isinstance(page_doc, dict) else None
                if leaves is None:
                    raise FeedMalformedError(page_url, "registration page has no items")

            if not isinstance(leaves, list):
                raise FeedMalformedError(page_url, f"items[{p}].items is not a list")

            for i, leaf in enumerate(leaves):
                if not isinstance(leaf, dict):
                    raise FeedMalformedError(page_url, f"items[{p}].items[{i}] is not an object")
                records.append(
                    record_from_catalog_entry(
                        leaf.get("catalogEntry"), page_url, f"items[{p}].items[{i}].catalogEntry"
                    )
                )

        logger.debug(f"Read {len(records)} metadata record(s) for {package_id}")
        return records

    async def _search_records(
        self,
        client: httpx.AsyncClient,
        search_url: str,
        package_id: str,
        cancel: Optional[asyncio.Event],
    ) -> List[RawVersionRecord]:
        params = {
            "q": f"packageid:{package_id}",
            "skip": 0,
            "take": 20,
            "prerelease": "true",
            "semVerLevel": "2.0.0",
        }
        document = await self._get_json(client, search_url, params=params, cancel=cancel, operation="Version listing")
        data = search_hits(document, search_url)

        for i, hit in enumerate(data):
            if isinstance(hit, dict) and str(hit.get("id", "")).casefold() == package_id.casefold():
                return records_from_search_hit(hit, search_url, f"data[{i}]")

        logger.info(f"Package {package_id} not found in search")
        return []

