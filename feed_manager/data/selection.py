"""
Which package versions the user has selected for bulk deletion.

Selection is UI state and is kept here, keyed by package id and version
identity, rather than on the immutable PackageVersion values.
"""
from __future__ import annotations

from typing import Iterable, List, Set, Tuple

from feed_manager.domain.models import Package, PackageVersion
from feed_manager.domain.versioning import SemanticVersion, VersionLike, parse_version

SelectionKey = Tuple[str, SemanticVersion]


def _key(package_id: str, version: VersionLike) -> SelectionKey:
    return package_id.casefold(), parse_version(version)


class SelectionState:
    def __init__(self):
        self._selected: Set[SelectionKey] = set()

    def select(self, package_id: str, version: VersionLike) -> None:
        self._selected.add(_key(package_id, version))

    def deselect(self, package_id: str, version: VersionLike) -> None:
        self._selected.discard(_key(package_id, version))

    def toggle(self, package_id: str, version: VersionLike) -> bool:
        """Flip the selection and return the new state."""
        key = _key(package_id, version)
        if key in self._selected:
            self._selected.remove(key)
            return False
        self._selected.add(key)
        return True

    def is_selected(self, package_id: str, version: VersionLike) -> bool:
        return _key(package_id, version) in self._selected

    def selected_for(self, packages: Iterable[Package]) -> List[Tuple[Package, PackageVersion]]:
        """Selected (package, version) pairs, in the order the packages list them."""
        pairs: List[Tuple[Package, PackageVersion]] = []
        for package in packages:
            for version in package.versions:
                if (package.id.casefold(), version.semantic_version) in self._selected:
                    pairs.append((package, version))
        return pairs

    def clear(self) -> None:
        self._selected.clear()

    def __len__(self) -> int:
        return len(self._selected)
