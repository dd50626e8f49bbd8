"""
Exceptions raised by the feed interaction core and the application shell.

All exceptions inherit from FeedManagerError so the HTTP shell can render any
of them the same way. ``status_code`` is the status the shell responds with;
the upstream feed's own HTTP status, when there is one, travels in
``details["http_status"]``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class FeedManagerError(Exception):
    """Base exception for all feed manager errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


def _http_details(url: str, reason: str, http_status: Optional[int]) -> Dict[str, Any]:
    details: Dict[str, Any] = {"url": url, "reason": reason}
    if http_status is not None:
        details["http_status"] = http_status
    return details


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class DiscoveryError(FeedManagerError):
    """Service index could not be turned into usable endpoints."""


class DiscoveryUnreachableError(DiscoveryError):
    """The service index could not be fetched or read. Usually transient."""

    def __init__(self, index_url: str, reason: str, http_status: Optional[int] = None):
        super().__init__(
            f"Feed index {index_url} is unreachable: {reason}",
            status_code=502,
            details=_http_details(index_url, reason, http_status),
        )
        self.index_url = index_url
        self.http_status = http_status


class MissingServiceError(DiscoveryError):
    """The feed does not advertise a service an operation needs."""

    def __init__(self, service: str, feed_root: Optional[str] = None):
        where = f" at {feed_root}" if feed_root else ""
        super().__init__(
            f"Feed{where} does not provide the {service} service",
            status_code=501,
            details={"service": service, "feed_root": feed_root},
        )
        self.service = service
        self.feed_root = feed_root


# ---------------------------------------------------------------------------
# Search and metadata
# ---------------------------------------------------------------------------


class FeedError(FeedManagerError):
    """
    A search or metadata request failed.

    ``partial`` holds whatever the operation collected before the failure
    (packages for a paginated search), so callers can decide whether to
    use it.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        details: Optional[Dict[str, Any]] = None,
        partial: Optional[List[Any]] = None,
    ):
        super().__init__(message, status_code=status_code, details=details)
        self.partial: List[Any] = list(partial or [])


class FeedTransportError(FeedError):
    """Connection failure, timeout or non-success HTTP status."""

    def __init__(
        self,
        url: str,
        reason: str,
        http_status: Optional[int] = None,
        partial: Optional[List[Any]] = None,
    ):
        super().__init__(
            f"Request to {url} failed: {reason}",
            details=_http_details(url, reason, http_status),
            partial=partial,
        )
        self.url = url
        self.http_status = http_status


class FeedMalformedError(FeedError):
    """A response arrived but could not be parsed."""

    def __init__(self, url: str, location: str, partial: Optional[List[Any]] = None):
        super().__init__(
            f"Malformed response from {url}: {location}",
            details={"url": url, "location": location},
            partial=partial,
        )
        self.url = url
        self.location = location


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class PushError(FeedManagerError):
    """Uploading a package artifact failed."""

    def __init__(self, message: str, path: str, status_code: int = 502, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=status_code, details={"path": path, **(details or {})})
        self.path = path


class PushTransportError(PushError):
    def __init__(self, path: str, reason: str, http_status: Optional[int] = None):
        details: Dict[str, Any] = {"reason": reason}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(f"Uploading {path} failed: {reason}", path, details=details)
        self.http_status = http_status


class PushUnauthorizedError(PushError):
    """The feed rejected the API key, or needs one and none was given."""

    def __init__(self, path: str, http_status: int, has_api_key: bool):
        hint = "API key was rejected" if has_api_key else "feed requires an API key"
        super().__init__(
            f"Uploading {path} was refused: {hint}",
            path,
            status_code=401,
            details={"http_status": http_status, "has_api_key": has_api_key},
        )
        self.http_status = http_status


class PushFileError(PushError):
    """A single artifact was rejected or could not be read."""

    def __init__(self, path: str, reason: str, http_status: Optional[int] = None):
        details: Dict[str, Any] = {"reason": reason}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(f"Package {path} was not uploaded: {reason}", path, status_code=422, details=details)
        self.http_status = http_status


class PushBatchError(FeedManagerError):
    """Raised on demand when one or more files of a push batch failed."""

    def __init__(self, failures: Sequence[Any]):
        names = ", ".join(str(f.path) for f in failures)
        super().__init__(
            f"{len(failures)} package(s) failed to upload: {names}",
            status_code=502,
            details={"failures": [{"path": str(f.path), "error": f.error} for f in failures]},
        )
        self.failures = list(failures)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class DeleteError(FeedManagerError):
    """Removing or unlisting a package version failed."""

    def __init__(self, message: str, package_id: str, version: str, status_code: int = 502, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            status_code=status_code,
            details={"package_id": package_id, "version": version, **(details or {})},
        )
        self.package_id = package_id
        self.version = version


class DeleteTransportError(DeleteError):
    def __init__(self, package_id: str, version: str, reason: str, http_status: Optional[int] = None):
        details: Dict[str, Any] = {"reason": reason}
        if http_status is not None:
            details["http_status"] = http_status
        super().__init__(f"Deleting {package_id} {version} failed: {reason}", package_id, version, details=details)
        self.http_status = http_status


class DeleteUnauthorizedError(DeleteError):
    def __init__(self, package_id: str, version: str, http_status: int, has_api_key: bool):
        hint = "API key was rejected" if has_api_key else "feed requires an API key"
        super().__init__(
            f"Deleting {package_id} {version} was refused: {hint}",
            package_id,
            version,
            status_code=401,
            details={"http_status": http_status, "has_api_key": has_api_key},
        )
        self.http_status = http_status


class DeleteNotFoundError(DeleteError):
    def __init__(self, package_id: str, version: str):
        super().__init__(
            f"{package_id} {version} does not exist on the feed",
            package_id,
            version,
            status_code=404,
            details={"http_status": 404},
        )


class DeleteInvalidVersionError(DeleteError):
    def __init__(self, package_id: str, version: str, reason: str):
        super().__init__(
            f"Cannot delete {package_id} {version}: {reason}",
            package_id,
            version,
            status_code=400,
            details={"reason": reason},
        )


# ---------------------------------------------------------------------------
# Shell and cross-cutting
# ---------------------------------------------------------------------------


class OperationCancelledError(FeedManagerError):
    """The caller's cancellation signal fired before the operation finished."""

    def __init__(self, operation: str, partial: Optional[List[Any]] = None):
        super().__init__(f"{operation} was cancelled", status_code=499, details={"operation": operation})
        self.operation = operation
        self.partial: List[Any] = list(partial or [])


class ConfigurationError(FeedManagerError):
    def __init__(self, message: str, config_file: Optional[str] = None):
        super().__init__(message, status_code=400, details={"config_file": config_file} if config_file else None)
        self.config_file = config_file


class CommandFailedError(FeedManagerError):
    """An external packaging command exited non-zero or could not start."""

    def __init__(self, args: Sequence[str], exit_code: int, stderr: str):
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(
            f"Command '{' '.join(args[:3])}' failed: {detail}",
            status_code=500,
            details={"args": list(args), "exit_code": exit_code, "stderr": stderr},
        )
        self.args_list = list(args)
        self.exit_code = exit_code
        self.stderr = stderr
