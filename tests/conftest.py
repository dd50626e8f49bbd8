"""
Test fixtures: an in-memory NuGet v3 feed served through httpx.MockTransport.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from feed_manager.domain.models import FeedConfig, FeedEndpoints

FEED_ROOT = "https://feed.test"
INDEX_URL = f"{FEED_ROOT}/v3/index.json"
SEARCH_URL = f"{FEED_ROOT}/query"
REGISTRATIONS_URL = f"{FEED_ROOT}/registration/"
PACKAGE_BASE_URL = f"{FEED_ROOT}/flatcontainer/"
PUBLISH_URL = f"{FEED_ROOT}/api/v2/package"

Handler = Callable[[httpx.Request], httpx.Response]


def service_index(include_registrations: bool = True, include_publish: bool = True) -> Dict[str, Any]:
    resources = [
        {"@id": SEARCH_URL, "@type": "SearchQueryService/3.5.0"},
        {"@id": PACKAGE_BASE_URL, "@type": "PackageBaseAddress/3.0.0"},
    ]
    if include_registrations:
        resources.append({"@id": REGISTRATIONS_URL, "@type": "RegistrationsBaseUrl/3.6.0"})
    if include_publish:
        resources.append({"@id": PUBLISH_URL, "@type": "PackagePublish/2.0.0"})
    return {"version": "3.0.0", "resources": resources}


def search_hit(package_id: str, versions: List[str], **extra: Any) -> Dict[str, Any]:
    hit = {
        "id": package_id,
        "version": versions[-1] if versions else None,
        "description": f"{package_id} description",
        "authors": ["Contoso"],
        "totalDownloads": 10 * len(versions),
        "versions": [{"version": v, "downloads": 10} for v in versions],
    }
    hit.update(extra)
    return hit


def catalog_leaf(version: str, listed: bool = True, **extra: Any) -> Dict[str, Any]:
    entry = {
        "version": version,
        "listed": listed,
        "published": "2024-03-01T10:00:00+00:00",
        "description": "From metadata",
        "authors": "Alice, Bob",
    }
    entry.update(extra)
    return {"catalogEntry": entry}


def registration_index(*leaves: Dict[str, Any]) -> Dict[str, Any]:
    return {"count": 1, "items": [{"count": len(leaves), "items": list(leaves)}]}


class FakeFeed:
    """Routes requests by method and URL path and records every request."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Union[Handler, httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, handler: Union[Handler, httpx.Response]) -> None:
        self.routes[(method.upper(), path)] = handler

    def json(self, path: str, payload: Any, status_code: int = 200, method: str = "GET") -> None:
        self.on(method, path, httpx.Response(status_code, json=payload))

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, text="not found")
        if isinstance(route, httpx.Response):
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def paged_search(hits: List[Dict[str, Any]], page_sizes: Optional[List[int]] = None) -> Handler:
    """
    Search handler slicing ``hits`` by skip/take. ``page_sizes`` caps the
    number of hits returned for each successive page.
    """
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        skip = int(request.url.params.get("skip", 0))
        take = int(request.url.params.get("take", 20))
        page = hits[skip:skip + take]
        if page_sizes is not None:
            cap = page_sizes[calls["n"]] if calls["n"] < len(page_sizes) else 0
            page = page[:cap]
        calls["n"] += 1
        return httpx.Response(200, content=json.dumps({"totalHits": len(hits), "data": page}))

    return handler


@pytest.fixture
def feed() -> FakeFeed:
    fake = FakeFeed()
    fake.json("/v3/index.json", service_index())
    return fake


@pytest.fixture
def endpoints() -> FeedEndpoints:
    return FeedEndpoints(
        feed_root=FEED_ROOT,
        index_url=INDEX_URL,
        search_url=SEARCH_URL,
        registrations_url=REGISTRATIONS_URL,
        publish_url=PUBLISH_URL,
    )


@pytest.fixture
def config() -> FeedConfig:
    return FeedConfig(feed_url=FEED_ROOT, api_key="secret-key")


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep that records the requested delays."""
    delays: List[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep
