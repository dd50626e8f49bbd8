"""
Pydantic models for the feed manager.

This module defines the data models shared by the feed interaction core and
the application shell:
- Feed configuration and resolved service endpoints
- Package and version value objects returned to callers
- Raw version records produced from search hits and metadata entries
- Options and result records for search, version listing, push and delete

The core only ever returns new instances of these models; it never mutates a
model the caller already holds.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from feed_manager.domain.errors import CommandFailedError, MissingServiceError, PushBatchError
from feed_manager.domain.versioning import SemanticVersion, VersionLike, parse_version


# ---------------------------------------------------------------------------
# Feed configuration
# ---------------------------------------------------------------------------


class FeedConfig(BaseModel):
    """
    Feed root URL and optional API key for one feed.

    Owned by the caller and passed into every operation that needs it. An
    absent API key is valid; it only matters if the feed rejects the call.
    """

    model_config = ConfigDict(frozen=True)

    feed_url: str = Field(
        description="Feed root URL, or the URL of its service index document.",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key sent with push and delete requests.",
    )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


# Service names as they appear in the feed's service index.
SEARCH_SERVICE = "SearchQueryService"
REGISTRATIONS_SERVICE = "RegistrationsBaseUrl"
PUBLISH_SERVICE = "PackagePublish"


class FeedEndpoints(BaseModel):
    """
    Service URLs resolved once from a feed's service index.

    Immutable after resolution. A caller caching endpoints per session should
    check ``for_root`` before reusing them for a different feed.
    """

    model_config = ConfigDict(frozen=True)

    feed_root: str = Field(description="Feed root the endpoints were resolved for.")
    index_url: str = Field(description="URL of the service index document that was read.")
    search_url: str = Field(description="Search query service URL.")
    registrations_url: Optional[str] = Field(
        default=None,
        description="Registrations (package metadata) base URL, if advertised.",
    )
    publish_url: Optional[str] = Field(
        default=None,
        description="Package publish URL used for push and delete, if advertised.",
    )

    def for_root(self, feed_root: str) -> bool:
        root = feed_root.strip().rstrip("/")
        return root in (self.feed_root.rstrip("/"), self.index_url.rstrip("/"))

    def require(self, service: str) -> str:
        url = {
            SEARCH_SERVICE: self.search_url,
            REGISTRATIONS_SERVICE: self.registrations_url,
            PUBLISH_SERVICE: self.publish_url,
        }.get(service)
        if not url:
            raise MissingServiceError(service, self.feed_root)
        return url


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class OrderBy(str, Enum):
    ID = "id"
    RELEVANCE = "relevance"


class VersionListOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    include_prerelease: bool = Field(default=True)
    include_unlisted: bool = Field(
        default=False,
        description="Keep versions the feed marks unlisted (a.k.a. delisted).",
    )
    include_search_snapshot: bool = Field(
        default=False,
        description="Also merge in the version list of the package's search hit.",
    )


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    include_prerelease: bool = Field(default=True)
    include_delisted: bool = Field(default=False)
    order_by: OrderBy = Field(default=OrderBy.ID)
    expand_versions: bool = Field(
        default=False,
        description="Replace each hit's version list with the full metadata version list.",
    )


# ---------------------------------------------------------------------------
# Package and version model
# ---------------------------------------------------------------------------


VersionSource = Literal["search", "metadata"]


class PackageVersion(BaseModel):
    """
    One version of a package as observed on the feed.

    Contains only feed data. Per-user state such as selection lives with the
    caller (see feed_manager.data.selection).
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(description="Version string as returned by the feed.")
    is_listed: bool = Field(default=True)
    published: Optional[datetime] = Field(default=None)
    description: Optional[str] = Field(default=None)
    authors: List[str] = Field(default_factory=list)
    download_count: Optional[int] = Field(default=None)
    source: VersionSource = Field(default="metadata")

    @computed_field
    @property
    def is_prerelease(self) -> bool:
        return self.semantic_version.is_prerelease

    @property
    def semantic_version(self) -> SemanticVersion:
        return SemanticVersion.parse(self.version)


class RawVersionRecord(BaseModel):
    """
    The single internal shape both version producers emit.

    Search hits and metadata catalog entries are mapped into this record and
    then merged by feed_manager.domain.entities.merge_version_records.
    """

    version: str
    is_listed: bool = True
    published: Optional[datetime] = None
    description: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    download_count: Optional[int] = None
    source: VersionSource = "metadata"

    @field_validator("version")
    @classmethod
    def _validate_version(cls, value: str) -> str:
        SemanticVersion.parse(value)
        return value.strip()

    @property
    def semantic_version(self) -> SemanticVersion:
        return SemanticVersion.parse(self.version)

    @property
    def richness(self) -> int:
        """Number of populated descriptive fields; the richer record wins a merge."""
        return int(bool(self.description and self.description.strip())) + int(bool(self.authors))

    def to_version(self) -> PackageVersion:
        return PackageVersion(**self.model_dump())


class DeletionOutcome(BaseModel):
    """Result of removing one version from an in-memory package."""

    package: "Package"
    removed: Optional[PackageVersion] = None
    package_now_empty: bool = False


class Package(BaseModel):
    """
    A package on the feed with its versions, newest first.

    Package ids compare case-insensitively, per feed convention.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Package identifier.")
    description: Optional[str] = Field(default=None)
    authors: List[str] = Field(default_factory=list)
    total_downloads: Optional[int] = Field(default=None)
    latest_version: Optional[str] = Field(
        default=None,
        description="Latest version reported by the search hit, if any.",
    )
    versions: List[PackageVersion] = Field(
        default_factory=list,
        description="Versions unique by identity, sorted descending.",
    )

    def same_id(self, other_id: str) -> bool:
        return self.id.casefold() == other_id.casefold()

    def find_version(self, version: VersionLike) -> Optional[PackageVersion]:
        target = parse_version(version)
        for v in self.versions:
            if v.semantic_version == target:
                return v
        return None

    def with_versions(self, versions: Sequence[PackageVersion]) -> "Package":
        return self.model_copy(update={"versions": list(versions)})

    def without_version(self, version: VersionLike) -> DeletionOutcome:
        """
        Return a copy of this package minus one version.

        The original package is left untouched. When the removed version was
        the last one, ``package_now_empty`` is set; dropping the package from
        the visible set is up to the caller.
        """
        target = parse_version(version)
        kept: List[PackageVersion] = []
        removed: Optional[PackageVersion] = None
        for v in self.versions:
            if removed is None and v.semantic_version == target:
                removed = v
                continue
            kept.append(v)

        return DeletionOutcome(
            package=self.with_versions(kept),
            removed=removed,
            package_now_empty=removed is not None and not kept,
        )


DeletionOutcome.model_rebuild()


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class SearchResult(BaseModel):
    packages: List[Package] = Field(default_factory=list)
    pages_requested: int = Field(default=0, description="Number of search page requests issued.")


class PushOutcome(BaseModel):
    path: str
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = Field(
        default=None,
        description="Exception class name for failed uploads (e.g. 'PushUnauthorizedError').",
    )


class PushReport(BaseModel):
    """Per-file result of a push batch."""

    outcomes: List[PushOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[PushOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[PushOutcome]:
        return [o for o in self.outcomes if not o.success]

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PushBatchError(self.failed)


class DeleteResult(BaseModel):
    package_id: str
    version: str


class CommandResult(BaseModel):
    args: List[str] = Field(description="Command line, with secrets masked.")
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self) -> None:
        if not self.succeeded:
            raise CommandFailedError(self.args, self.exit_code, self.stderr)


PathLike = Union[str, Path]
