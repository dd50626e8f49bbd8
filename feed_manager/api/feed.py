from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from feed_manager.core.dependencies import (
    FeedSession,
    get_command_runner,
    get_lifecycle,
    get_paginator,
    get_selection,
    get_session,
    get_settings_store,
    get_version_aggregator,
)
from feed_manager.data.selection import SelectionState
from feed_manager.data.settings import SettingsStore
from feed_manager.data.solution import load_solution, resolve_project_path
from feed_manager.domain.errors import (
    DeleteInvalidVersionError,
    FeedError,
    FeedManagerError,
    OperationCancelledError,
)
from feed_manager.domain.models import (
    DeleteResult,
    FeedConfig,
    Package,
    PushOutcome,
    PushReport,
    SearchOptions,
    VersionListOptions,
)
from feed_manager.domain.versioning import InvalidVersionError, parse_version
from feed_manager.services.commands import CommandRunner
from feed_manager.services.lifecycle import LifecycleOperations
from feed_manager.services.search import PackageSearchPaginator
from feed_manager.services.versions import VersionAggregator

logger = logging.getLogger(__name__)
router = APIRouter()

# "Load all" asks for this many packages, with full version lists.
LOAD_ALL_COUNT = 100


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class SettingsUpdate(BaseModel):
    feed_url: Optional[str] = Field(default=None, description="Feed root URL")
    api_key: Optional[str] = Field(default=None, description="API key; empty clears it")


class PushRequest(BaseModel):
    paths: List[str] = Field(description="Package files to upload")
    use_cli: bool = Field(default=False, description="Upload with 'dotnet nuget push' instead of HTTP")


class DeleteSelectedRequest(BaseModel):
    confirm: bool = Field(default=False, description="Must be true; deletion cannot be undone")
    use_cli: bool = Field(default=False, description="Delete with 'dotnet nuget delete' instead of HTTP")


class PackRequest(BaseModel):
    projects: List[str] = Field(
        description="Project display names from the loaded solution, or project file paths",
    )
    version: Optional[str] = Field(default=None, description="Overrides PackageVersion")
    output_dir: Optional[str] = Field(default=None, description="Where the packages are written")


class SolutionLoadRequest(BaseModel):
    path: str = Field(description="Path of the .sln file")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _package_view(package: Package, selection: SelectionState) -> Dict[str, Any]:
    data = package.model_dump(mode="json")
    for version_data, version in zip(data["versions"], package.versions):
        version_data["selected"] = selection.is_selected(package.id, version.semantic_version)
    return data


def _packages_view(packages: List[Package], selection: SelectionState) -> List[Dict[str, Any]]:
    return [_package_view(p, selection) for p in packages]


def _require_version(version: str):
    try:
        return parse_version(version)
    except InvalidVersionError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _run_search(
    session: FeedSession,
    store: SettingsStore,
    paginator: PackageSearchPaginator,
    selection: SelectionState,
    query: str,
    count: int,
    options: SearchOptions,
) -> Dict[str, Any]:
    endpoints = await session.endpoints_for(store.feed_config())
    try:
        result = await paginator.search(endpoints, query, count, options)
    except (FeedError, OperationCancelledError) as e:
        # Keep what was collected so the user still sees it.
        if e.partial:
            session.packages = list(e.partial)
            e.details["partial"] = _packages_view(session.packages, selection)
        raise

    session.packages = result.packages
    return {
        "packages": _packages_view(result.packages, selection),
        "pages_requested": result.pages_requested,
    }


# ---------------------------------------------------------------------------
# Health and settings
# ---------------------------------------------------------------------------

@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/settings")
async def read_settings(store: SettingsStore = Depends(get_settings_store)) -> dict:
    settings = store.settings
    return {"feed_url": settings.feed_url, "has_api_key": bool(settings.api_key)}


@router.put("/settings")
async def update_settings(
    body: SettingsUpdate,
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    selection: SelectionState = Depends(get_selection),
) -> dict:
    current = store.settings
    previous = current.feed_url
    # Fields left out of the body keep their stored value.
    changes = body.model_dump(exclude_unset=True)
    settings = store.update(
        feed_url=changes.get("feed_url", current.feed_url),
        api_key=changes.get("api_key", current.api_key),
    )
    if settings.feed_url != previous:
        logger.info(f"Feed changed from {previous} to {settings.feed_url}; clearing session")
        session.packages = []
        selection.clear()
    return {"feed_url": settings.feed_url, "has_api_key": bool(settings.api_key)}


# ---------------------------------------------------------------------------
# Search and versions
# ---------------------------------------------------------------------------

@router.get("/packages")
async def search_packages(
    q: str = Query(default="", description="Search text; empty matches all packages"),
    count: int = Query(default=100, ge=0, le=1000),
    prerelease: bool = Query(default=True),
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    paginator: PackageSearchPaginator = Depends(get_paginator),
    selection: SelectionState = Depends(get_selection),
) -> dict:
    options = SearchOptions(include_prerelease=prerelease)
    return await _run_search(session, store, paginator, selection, q, count, options)


@router.get("/packages/all")
async def load_all_packages(
    prerelease: bool = Query(default=True),
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    paginator: PackageSearchPaginator = Depends(get_paginator),
    selection: SelectionState = Depends(get_selection),
) -> dict:
    options = SearchOptions(include_prerelease=prerelease, expand_versions=True)
    return await _run_search(session, store, paginator, selection, "", LOAD_ALL_COUNT, options)


@router.get("/packages/{package_id}/versions")
async def package_versions(
    package_id: str,
    prerelease: bool = Query(default=True),
    unlisted: bool = Query(default=False),
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    aggregator: VersionAggregator = Depends(get_version_aggregator),
    selection: SelectionState = Depends(get_selection),
) -> dict:
    endpoints = await session.endpoints_for(store.feed_config())
    options = VersionListOptions(include_prerelease=prerelease, include_unlisted=unlisted)
    versions = await aggregator.list_versions(endpoints, package_id, options)

    package = session.find_package(package_id)
    if package is not None:
        package = package.with_versions(versions)
        session.replace_package(package)
    else:
        package = Package(id=package_id, versions=versions)
    return _package_view(package, selection)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

@router.post("/packages/{package_id}/versions/{version}/select")
async def select_version(
    package_id: str,
    version: str,
    selection: SelectionState = Depends(get_selection),
) -> dict:
    selection.select(package_id, _require_version(version))
    return {"package_id": package_id, "version": version, "selected": True}


@router.delete("/packages/{package_id}/versions/{version}/select")
async def deselect_version(
    package_id: str,
    version: str,
    selection: SelectionState = Depends(get_selection),
) -> dict:
    selection.deselect(package_id, _require_version(version))
    return {"package_id": package_id, "version": version, "selected": False}


@router.post("/packages/{package_id}/versions/{version}/toggle")
async def toggle_version(
    package_id: str,
    version: str,
    selection: SelectionState = Depends(get_selection),
) -> dict:
    selected = selection.toggle(package_id, _require_version(version))
    return {"package_id": package_id, "version": version, "selected": selected}


# ---------------------------------------------------------------------------
# Push and delete
# ---------------------------------------------------------------------------

@router.post("/packages/push")
async def push_packages(
    body: PushRequest,
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    lifecycle: LifecycleOperations = Depends(get_lifecycle),
    runner: CommandRunner = Depends(get_command_runner),
) -> dict:
    if not body.paths:
        raise HTTPException(status_code=400, detail="No package files given")
    config = store.feed_config()
    if body.use_cli:
        report = await _push_with_cli(runner, body.paths, config)
    else:
        endpoints = await session.endpoints_for(config)
        report = await lifecycle.push_packages(endpoints, body.paths, config)
    return {
        "outcomes": [o.model_dump() for o in report.outcomes],
        "succeeded": len(report.succeeded),
        "failed": len(report.failed),
    }


async def _push_with_cli(runner: CommandRunner, paths: List[str], config: FeedConfig) -> PushReport:
    outcomes: List[PushOutcome] = []
    for path in paths:
        try:
            result = await runner.push_with_cli(path, config)
            result.raise_for_status()
        except FeedManagerError as e:
            logger.error(f"Upload of {path} failed: {e.message}")
            outcomes.append(PushOutcome(path=path, success=False, error=e.message, error_type=e.__class__.__name__))
            continue
        outcomes.append(PushOutcome(path=path, success=True))
    return PushReport(outcomes=outcomes)


async def _delete_with_cli(runner: CommandRunner, package_id: str, version: str, config: FeedConfig) -> DeleteResult:
    try:
        normalized = parse_version(version).normalized
    except InvalidVersionError as e:
        raise DeleteInvalidVersionError(package_id, version, str(e)) from e
    result = await runner.delete_with_cli(package_id, normalized, config)
    result.raise_for_status()
    return DeleteResult(package_id=package_id, version=normalized)


async def _delete_one(
    package_id: str,
    version: str,
    store: SettingsStore,
    session: FeedSession,
    lifecycle: LifecycleOperations,
    selection: SelectionState,
    runner: Optional[CommandRunner] = None,
) -> Dict[str, Any]:
    """Delete one version, through the CLI when ``runner`` is given, and update the session."""
    config = store.feed_config()
    if runner is not None:
        result = await _delete_with_cli(runner, package_id, version, config)
    else:
        endpoints = await session.endpoints_for(config)
        result = await lifecycle.delete_version(endpoints, package_id, version, config)

    selection.deselect(package_id, version)
    package_removed = False
    package = session.find_package(package_id)
    if package is not None:
        outcome = package.without_version(version)
        if outcome.package_now_empty:
            session.drop_package(package_id)
            package_removed = True
        else:
            session.replace_package(outcome.package)

    return {**result.model_dump(), "package_removed": package_removed}


@router.delete("/packages/{package_id}/versions/{version}")
async def delete_version(
    package_id: str,
    version: str,
    confirm: bool = Query(default=False),
    use_cli: bool = Query(default=False),
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    lifecycle: LifecycleOperations = Depends(get_lifecycle),
    selection: SelectionState = Depends(get_selection),
    runner: CommandRunner = Depends(get_command_runner),
) -> dict:
    if not confirm:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed with confirm=true")
    _require_version(version)
    return await _delete_one(
        package_id, version, store, session, lifecycle, selection, runner if use_cli else None
    )


@router.post("/packages/delete-selected")
async def delete_selected(
    body: DeleteSelectedRequest,
    store: SettingsStore = Depends(get_settings_store),
    session: FeedSession = Depends(get_session),
    lifecycle: LifecycleOperations = Depends(get_lifecycle),
    selection: SelectionState = Depends(get_selection),
    runner: CommandRunner = Depends(get_command_runner),
) -> dict:
    if not body.confirm:
        raise HTTPException(status_code=400, detail="Deletion must be confirmed with confirm=true")

    pairs = selection.selected_for(session.packages)
    if not pairs:
        raise HTTPException(status_code=400, detail="No versions selected")

    cli_runner = runner if body.use_cli else None
    deleted: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    for package, version in pairs:
        try:
            deleted.append(
                await _delete_one(package.id, version.version, store, session, lifecycle, selection, cli_runner)
            )
        except FeedManagerError as e:
            logger.error(f"Could not delete {package.id} {version.version}: {e.message}")
            failed.append({"package_id": package.id, "version": version.version, **e.to_dict()})

    return {"deleted": deleted, "failed": failed}


# ---------------------------------------------------------------------------
# Projects and solutions
# ---------------------------------------------------------------------------

@router.post("/solution/load")
async def load_solution_file(
    body: SolutionLoadRequest,
    session: FeedSession = Depends(get_session),
) -> dict:
    if not Path(body.path).is_file():
        raise HTTPException(status_code=404, detail=f"Solution file not found: {body.path}")
    session.solution = load_solution(body.path)
    return session.solution.model_dump()


@router.post("/projects/pack")
async def pack_projects(
    body: PackRequest,
    session: FeedSession = Depends(get_session),
    runner: CommandRunner = Depends(get_command_runner),
) -> dict:
    results: List[Dict[str, Any]] = []
    for project in body.projects:
        if session.solution is not None and project in session.solution.projects:
            project_path = resolve_project_path(session.solution.solution_dir, session.solution.projects[project])
        else:
            project_path = Path(project)

        try:
            result = await runner.pack_project(project_path, body.output_dir, body.version)
            result.raise_for_status()
        except FeedManagerError as e:
            logger.error(f"Packing {project} failed: {e.message}")
            results.append({"project": project, "success": False, "error": e.message})
            continue
        results.append({"project": project, "success": True, "output": result.stdout})

    return {
        "results": results,
        "succeeded": sum(1 for r in results if r["success"]),
        "failed": sum(1 for r in results if not r["success"]),
    }
