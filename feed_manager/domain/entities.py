"""
Normalization of feed responses into the package/version model.

Two producers feed one merge function:

* search hits (lightweight: version string and download count per version)
* metadata catalog entries (listing state, publish date, description, authors)

Both are mapped into RawVersionRecord, and merge_version_records is the only
place where versions are de-duplicated and sorted.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from feed_manager.domain.errors import FeedMalformedError
from feed_manager.domain.feed_utils import optional_text, split_authors
from feed_manager.domain.models import Package, PackageVersion, RawVersionRecord
from feed_manager.domain.versioning import SemanticVersion

logger = logging.getLogger(__name__)

# Legacy feeds unlist a version by setting its publish date to 1900-01-01.
UNLISTED_PUBLISH_YEAR = 1900


def _describe_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def record_from_catalog_entry(entry: Dict[str, Any], url: str, location: str) -> RawVersionRecord:
    """Map a registration leaf's ``catalogEntry`` to a raw record."""
    if not isinstance(entry, dict):
        raise FeedMalformedError(url, f"{location}: catalogEntry is not an object")

    try:
        record = RawVersionRecord(
            version=entry.get("version"),
            is_listed=entry.get("listed", True) is not False,
            published=entry.get("published") or None,
            description=optional_text(entry.get("description")),
            authors=split_authors(entry.get("authors")),
            download_count=_int_or_none(entry.get("downloadCount", entry.get("downloads"))),
            source="metadata",
        )
    except ValidationError as e:
        raise FeedMalformedError(url, f"{location}: {_describe_error(e)}") from e

    if record.published is not None and record.published.year == UNLISTED_PUBLISH_YEAR:
        record = record.model_copy(update={"is_listed": False})
    return record


def records_from_search_hit(hit: Dict[str, Any], url: str, location: str) -> List[RawVersionRecord]:
    """
    Map the ``versions`` array of a search hit to raw records.

    Entries may be objects (``{"version", "downloads"}``) or bare strings.
    Search results only contain listed versions.
    """
    raw_versions = hit.get("versions") or []
    if not isinstance(raw_versions, list):
        raise FeedMalformedError(url, f"{location}.versions is not a list")

    records: List[RawVersionRecord] = []
    for i, item in enumerate(raw_versions):
        if isinstance(item, dict):
            version = item.get("version")
            downloads = _int_or_none(item.get("downloads"))
        else:
            version = item
            downloads = None

        if version is None or (isinstance(version, str) and not version.strip()):
            continue

        try:
            records.append(RawVersionRecord(version=version, download_count=downloads, source="search"))
        except ValidationError as e:
            raise FeedMalformedError(url, f"{location}.versions[{i}]: {_describe_error(e)}") from e
    return records


def merge_version_records(records: Iterable[RawVersionRecord]) -> List[PackageVersion]:
    """
    De-duplicate raw records by version identity and sort newest first.

    When the same version comes from more than one record, the record with
    more descriptive metadata (description, authors) wins; on a tie the
    first one seen is kept.
    """
    chosen: Dict[SemanticVersion, RawVersionRecord] = {}
    for record in records:
        key = record.semantic_version
        current = chosen.get(key)
        if current is None or record.richness > current.richness:
            chosen[key] = record

    versions = [r.to_version() for r in chosen.values()]
    versions.sort(key=lambda v: v.semantic_version, reverse=True)
    return versions


def filter_versions(
    versions: Iterable[PackageVersion],
    include_prerelease: bool = True,
    include_unlisted: bool = False,
) -> List[PackageVersion]:
    result: List[PackageVersion] = []
    for v in versions:
        if not include_prerelease and v.is_prerelease:
            continue
        if not include_unlisted and not v.is_listed:
            continue
        result.append(v)
    return result


def package_from_search_hit(
    hit: Dict[str, Any],
    url: str,
    location: str,
    include_prerelease: bool = True,
) -> Package:
    """Build a Package from one entry of a search response's ``data`` array."""
    if not isinstance(hit, dict):
        raise FeedMalformedError(url, f"{location} is not an object")

    package_id = optional_text(hit.get("id"))
    if not package_id:
        raise FeedMalformedError(url, f"{location}.id is missing")

    versions = merge_version_records(records_from_search_hit(hit, url, location))
    versions = filter_versions(versions, include_prerelease=include_prerelease, include_unlisted=True)

    return Package(
        id=package_id,
        description=optional_text(hit.get("description")),
        authors=split_authors(hit.get("authors")),
        total_downloads=_int_or_none(hit.get("totalDownloads")),
        latest_version=optional_text(hit.get("version")),
        versions=versions,
    )


def search_hits(document: Any, url: str) -> List[Any]:
    """Return the ``data`` array of a search response."""
    if not isinstance(document, dict):
        raise FeedMalformedError(url, "search response is not an object")
    data = document.get("data")
    if data is None:
        return []
    if not isinstance(data, list):
        raise FeedMalformedError(url, "data is not a list")
    return data
