"""
Resolve the service endpoints a feed advertises in its service index.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from feed_manager.domain.errors import (
    DiscoveryUnreachableError,
    FeedMalformedError,
    FeedTransportError,
    MissingServiceError,
)
from feed_manager.domain.feed_utils import service_index_url, type_matches
from feed_manager.domain.models import (
    PUBLISH_SERVICE,
    REGISTRATIONS_SERVICE,
    SEARCH_SERVICE,
    FeedEndpoints,
)
from feed_manager.services.feed_client import FeedService

logger = logging.getLogger(__name__)

# Endpoint field -> @type marker. Search is the only service every operation
# of this client needs; the others are checked when an operation uses them.
SERVICE_MARKERS: Dict[str, str] = {
    "search_url": SEARCH_SERVICE,
    "registrations_url": REGISTRATIONS_SERVICE,
    "publish_url": PUBLISH_SERVICE,
}
REQUIRED_SERVICES = ("search_url",)


def find_service(resources: List[Dict[str, Any]], marker: str) -> Optional[str]:
    """Return the ``@id`` of the first resource whose ``@type`` contains marker."""
    for resource in resources:
        if not isinstance(resource, dict):
            continue
        if type_matches(resource.get("@type"), marker):
            service_id = resource.get("@id")
            if isinstance(service_id, str) and service_id:
                return service_id
    return None


class FeedDiscoveryResolver(FeedService):
    """Reads a feed's service index and returns its FeedEndpoints."""

    async def resolve(self, feed_root: str, cancel: Optional[asyncio.Event] = None) -> FeedEndpoints:
        index_url = service_index_url(feed_root)
        logger.info(f"Resolving feed endpoints from {index_url}")

        try:
            async with self._client() as client:
                document = await self._get_json(client, index_url, cancel=cancel, operation="Feed discovery")
        except FeedTransportError as e:
            raise DiscoveryUnreachableError(index_url, e.details.get("reason", e.message), e.http_status) from e
        except FeedMalformedError as e:
            raise DiscoveryUnreachableError(index_url, e.location) from e

        resources = document.get("resources") if isinstance(document, dict) else None
        if not isinstance(resources, list):
            raise DiscoveryUnreachableError(index_url, "service index has no 'resources' list")

        found = {field: find_service(resources, marker) for field, marker in SERVICE_MARKERS.items()}
        for field in REQUIRED_SERVICES:
            if not found[field]:
                logger.error(f"Feed {feed_root} does not advertise {SERVICE_MARKERS[field]}")
                raise MissingServiceError(SERVICE_MARKERS[field], feed_root)

        endpoints = FeedEndpoints(feed_root=feed_root.strip(), index_url=index_url, **found)
        logger.debug(f"Resolved endpoints for {feed_root}: {endpoints.model_dump(exclude_none=True)}")
        return endpoints
