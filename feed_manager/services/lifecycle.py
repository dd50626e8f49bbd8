"""
Push and delete package versions through the feed's publish service.

Both operations are plain remote calls: they report what happened and leave
any in-memory package state for the caller to update.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import aiofiles
import httpx

from feed_manager.domain.errors import (
    DeleteInvalidVersionError,
    DeleteNotFoundError,
    DeleteTransportError,
    DeleteUnauthorizedError,
    OperationCancelledError,
    PushError,
    PushFileError,
    PushTransportError,
    PushUnauthorizedError,
)
from feed_manager.domain.feed_utils import join_url
from feed_manager.domain.models import (
    PUBLISH_SERVICE,
    DeleteResult,
    FeedConfig,
    FeedEndpoints,
    PathLike,
    PushOutcome,
    PushReport,
)
from feed_manager.domain.versioning import InvalidVersionError, parse_version
from feed_manager.services.feed_client import FeedService, run_cancellable

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-NuGet-ApiKey"
UNAUTHORIZED_STATUSES = (401, 403)
# Uploads can be large; allow more time than metadata requests.
PUSH_TIMEOUT = 300.0


def _auth_headers(config: FeedConfig) -> Dict[str, str]:
    if config.api_key:
        return {API_KEY_HEADER: config.api_key}
    return {}


def _reason(response: httpx.Response) -> str:
    reason = f"HTTP {response.status_code} {response.reason_phrase}".strip()
    body = response.text.strip() if response.content else ""
    if body and len(body) <= 500:
        reason = f"{reason}: {body}"
    return reason


class LifecycleOperations(FeedService):
    """Uploads package artifacts and removes package versions."""

    def __init__(self, timeout: float = PUSH_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout=timeout, transport=transport)

    async def push_packages(
        self,
        endpoints: FeedEndpoints,
        package_paths: Sequence[PathLike],
        config: FeedConfig,
        cancel: Optional[asyncio.Event] = None,
    ) -> PushReport:
        """
        Upload each package file, best effort across the batch.

        A failing file is recorded in the report and the next file is tried.
        Use PushReport.raise_for_failures() to turn failures into an error.
        """
        publish_url = endpoints.require(PUBLISH_SERVICE)
        outcomes: List[PushOutcome] = []

        async with self._client(headers=_auth_headers(config)) as client:
            for raw_path in package_paths:
                path = Path(raw_path)
                logger.info(f"Uploading {path} to {publish_url}")
                try:
                    await self._push_one(client, publish_url, path, config, cancel)
                except PushError as e:
                    logger.error(f"Upload failed: {e.message}")
                    outcomes.append(
                        PushOutcome(path=str(path), success=False, error=e.message, error_type=e.__class__.__name__)
                    )
                    continue
                except OperationCancelledError as e:
                    raise OperationCancelledError("Package push", partial=outcomes) from e

                logger.info(f"Uploaded {path}")
                outcomes.append(PushOutcome(path=str(path), success=True))

        return PushReport(outcomes=outcomes)

    async def _push_one(
        self,
        client: httpx.AsyncClient,
        publish_url: str,
        path: Path,
        config: FeedConfig,
        cancel: Optional[asyncio.Event],
    ) -> None:
        if not path.is_file():
            raise PushFileError(str(path), "file not found")

        try:
            async with aiofiles.open(path, "rb") as f:
                content = await f.read()
        except OSError as e:
            raise PushFileError(str(path), f"cannot read file ({e})") from e

        files = {"package": (path.name, content, "application/octet-stream")}
        try:
            response = await run_cancellable(client.put(publish_url, files=files), cancel, "Package push")
        except httpx.HTTPError as e:
            raise PushTransportError(str(path), str(e) or e.__class__.__name__) from e

        if response.is_success:
            return
        if response.status_code in UNAUTHORIZED_STATUSES:
            raise PushUnauthorizedError(str(path), response.status_code, config.has_api_key)
        if response.status_code >= 500:
            raise PushTransportError(str(path), _reason(response), response.status_code)
        # 400 invalid package, 409 version already exists, ...
        raise PushFileError(str(path), _reason(response), response.status_code)

    async def delete_version(
        self,
        endpoints: FeedEndpoints,
        package_id: str,
        version: str,
        config: FeedConfig,
        cancel: Optional[asyncio.Event] = None,
    ) -> DeleteResult:
        """
        Delete (or unlist, depending on the feed) one package version.

        Assumes the caller has already confirmed the deletion.
        """
        publish_url = endpoints.require(PUBLISH_SERVICE)
        try:
            normalized = parse_version(version).normalized
        except InvalidVersionError as e:
            raise DeleteInvalidVersionError(package_id, version, str(e)) from e
        url = join_url(publish_url, package_id, normalized)
        logger.info(f"Deleting {package_id} {normalized} via {url}")

        async with self._client(headers=_auth_headers(config)) as client:
            try:
                response = await run_cancellable(client.delete(url), cancel, "Package delete")
            except httpx.HTTPError as e:
                logger.error(f"Delete of {package_id} {normalized} failed: {e}")
                raise DeleteTransportError(package_id, normalized, str(e) or e.__class__.__name__) from e

        if response.status_code in UNAUTHORIZED_STATUSES:
            raise DeleteUnauthorizedError(package_id, normalized, response.status_code, config.has_api_key)
        if response.status_code == 404:
            raise DeleteNotFoundError(package_id, normalized)
        if response.is_error:
            raise DeleteTransportError(package_id, normalized, _reason(response), response.status_code)

        logger.info(f"Deleted {package_id} {normalized}")
        return DeleteResult(package_id=package_id, version=normalized)
