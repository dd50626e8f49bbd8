from typing import Any, List, Optional
from urllib.parse import quote

SERVICE_INDEX_SUFFIX = "/index.json"
DEFAULT_INDEX_PATH = "/v3/index.json"


def service_index_url(feed_root: str) -> str:
    """
    Return the URL of the feed's service index document.

    A root that already points at an index document is used as-is; anything
    else gets the well-known ``/v3/index.json`` path appended.
    """
    root = feed_root.strip()
    if root.endswith(SERVICE_INDEX_SUFFIX):
        return root
    return root.rstrip("/") + DEFAULT_INDEX_PATH


def join_url(base: str, *parts: str) -> str:
    """Append path segments to a service URL, quoting each segment."""
    url = base.rstrip("/")
    for part in parts:
        url += "/" + quote(str(part).strip("/"), safe="")
    return url


def type_matches(type_value: Any, marker: str) -> bool:
    """
    Check a resource ``@type`` against a service marker.

    Feeds publish versioned types such as ``SearchQueryService/3.5.0``, so
    matching is by substring. Some servers emit a list of types.
    """
    if isinstance(type_value, str):
        return marker in type_value
    if isinstance(type_value, list):
        return any(isinstance(t, str) and marker in t for t in type_value)
    return False


def split_authors(value: Any) -> List[str]:
    """
    Normalize an authors field to a list of names.

    Search hits carry a list, metadata entries usually a comma-separated
    string.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [a.strip() for a in value.split(",") if a.strip()]
    if isinstance(value, list):
        return [str(a).strip() for a in value if a is not None and str(a).strip()]
    return [str(value)]


def optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
