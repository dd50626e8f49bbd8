from __future__ import annotations

import logging
from typing import List, Optional

from feed_manager.data.selection import SelectionState
from feed_manager.data.settings import SettingsStore
from feed_manager.data.solution import SolutionScan
from feed_manager.domain.models import FeedConfig, FeedEndpoints, Package
from feed_manager.services.commands import CommandRunner
from feed_manager.services.discovery import FeedDiscoveryResolver
from feed_manager.services.lifecycle import LifecycleOperations
from feed_manager.services.search import PackageSearchPaginator
from feed_manager.services.versions import VersionAggregator

logger = logging.getLogger(__name__)

_settings_store: Optional[SettingsStore] = None
_selection: Optional[SelectionState] = None
_resolver: Optional[FeedDiscoveryResolver] = None
_version_aggregator: Optional[VersionAggregator] = None
_paginator: Optional[PackageSearchPaginator] = None
_lifecycle: Optional[LifecycleOperations] = None
_command_runner: Optional[CommandRunner] = None
_session: Optional["FeedSession"] = None


class FeedSession:
    """
    Per-process UI state: the resolved endpoints of the current feed, the
    packages last shown, and the loaded solution.
    """

    def __init__(self, resolver: Optional[FeedDiscoveryResolver] = None):
        self.resolver = resolver
        self.endpoints: Optional[FeedEndpoints] = None
        self.packages: List[Package] = []
        self.solution: Optional[SolutionScan] = None

    async def endpoints_for(self, config: FeedConfig) -> FeedEndpoints:
        """Resolved endpoints for ``config``, discovering them on first use or feed change."""
        if self.endpoints is None or not self.endpoints.for_root(config.feed_url):
            logger.info(f"Resolving service index for {config.feed_url}")
            resolver = self.resolver or get_resolver()
            self.endpoints = await resolver.resolve(config.feed_url)
        return self.endpoints

    def replace_package(self, package: Package) -> None:
        self.packages = [package if p.same_id(package.id) else p for p in self.packages]

    def drop_package(self, package_id: str) -> None:
        self.packages = [p for p in self.packages if not p.same_id(package_id)]

    def find_package(self, package_id: str) -> Optional[Package]:
        for p in self.packages:
            if p.same_id(package_id):
                return p
        return None


def get_settings_store() -> SettingsStore:
    global _settings_store
    if _settings_store is None:
        _settings_store = SettingsStore()
    return _settings_store

def get_selection() -> SelectionState:
    global _selection
    if _selection is None:
        _selection = SelectionState()
    return _selection

def get_resolver() -> FeedDiscoveryResolver:
    global _resolver
    if _resolver is None:
        _resolver = FeedDiscoveryResolver()
    return _resolver

def get_version_aggregator() -> VersionAggregator:
    global _version_aggregator
    if _version_aggregator is None:
        _version_aggregator = VersionAggregator()
    return _version_aggregator

def get_paginator() -> PackageSearchPaginator:
    global _paginator
    if _paginator is None:
        _paginator = PackageSearchPaginator(version_aggregator=get_version_aggregator())
    return _paginator

def get_lifecycle() -> LifecycleOperations:
    global _lifecycle
    if _lifecycle is None:
        _lifecycle = LifecycleOperations()
    return _lifecycle

def get_command_runner() -> CommandRunner:
    global _command_runner
    if _command_runner is None:
        _command_runner = CommandRunner()
    return _command_runner

def get_session() -> FeedSession:
    global _session
    if _session is None:
        _session = FeedSession()
    return _session
