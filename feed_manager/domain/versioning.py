"""
Semantic version parsing and ordering for feed package versions.

Feeds return version strings in NuGet's flavour of SemVer 2.0:

    major[.minor[.patch[.revision]]][-prerelease][+metadata]

Missing numeric parts default to zero, so ``1.0`` and ``1.0.0`` are the same
version. Build metadata is carried along for display but ignored for
equality and ordering.
"""
from __future__ import annotations

import functools
import re
from typing import Optional, Tuple, Union

_VERSION_RE = re.compile(
    r"^(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+))?"
    r"(?:\.(?P<patch>\d+))?"
    r"(?:\.(?P<revision>\d+))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class InvalidVersionError(ValueError):
    """Raised when a string is not a valid semantic version."""


def _identifier_key(identifier: str) -> Tuple[int, int, str]:
    # Numeric identifiers sort below alphanumeric ones.
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier.lower())


@functools.total_ordering
class SemanticVersion:
    """
    A parsed, comparable package version.

    Ordering follows SemVer precedence: the numeric core compares first,
    then a release sorts above any prerelease of the same core. Prerelease
    identifiers compare left to right (numeric ones numerically,
    alphanumeric ones case-insensitively), and when every shared identifier
    is equal the shorter list sorts first.
    """

    __slots__ = ("major", "minor", "patch", "revision", "prerelease", "metadata", "original")

    def __init__(
        self,
        major: int,
        minor: int = 0,
        patch: int = 0,
        revision: int = 0,
        prerelease: Tuple[str, ...] = (),
        metadata: Optional[str] = None,
        original: Optional[str] = None,
    ):
        self.major = major
        self.minor = minor
        self.patch = patch
        self.revision = revision
        self.prerelease = tuple(prerelease)
        self.metadata = metadata
        self.original = original

    @classmethod
    def parse(cls, value: str) -> "SemanticVersion":
        if not isinstance(value, str):
            raise InvalidVersionError(f"Version must be a string, got {type(value).__name__}")
        text = value.strip()
        match = _VERSION_RE.match(text)
        if not match:
            raise InvalidVersionError(f"Invalid version string: {value!r}")

        prerelease = match.group("prerelease")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            revision=int(match.group("revision") or 0),
            prerelease=tuple(prerelease.split(".")) if prerelease else (),
            metadata=match.group("metadata"),
            original=text,
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def normalized(self) -> str:
        """Canonical form: revision only when non-zero, metadata dropped."""
        core = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            core = f"{core}.{self.revision}"
        if self.prerelease:
            core = f"{core}-{'.'.join(self.prerelease)}"
        return core

    def _sort_key(self) -> tuple:
        return (
            self.major,
            self.minor,
            self.patch,
            self.revision,
            0 if self.prerelease else 1,
            tuple(_identifier_key(p) for p in self.prerelease),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._sort_key() == other._sort_key()

    def __lt__(self, other: "SemanticVersion") -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self) -> int:
        return hash(self._sort_key())

    def __str__(self) -> str:
        return self.original or self.normalized

    def __repr__(self) -> str:
        return f"SemanticVersion({str(self)!r})"


VersionLike = Union[str, SemanticVersion]


def parse_version(value: VersionLike) -> SemanticVersion:
    if isinstance(value, SemanticVersion):
        return value
    return SemanticVersion.parse(value)
