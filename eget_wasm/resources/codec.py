"""Mapping between remote URLs and paths in the download cache.

The sandboxed eget reads ``/tmp/<scheme>/<rest of the URL>`` whenever it
wants ``<scheme>://<rest of the URL>``: the first ``://`` becomes a path
separator and the result is cleaned like a slash-separated path. The host
mounts the cache root at ``/tmp``, so both sides must derive exactly the
same relative path, query strings and fragments included.
"""

from pathlib import Path
from urllib.parse import urlsplit

from eget_wasm.exceptions import InvalidLocatorError


def cache_relpath(url: str) -> tuple[str, ...]:
    """Return the cache path components for ``url``.

    Args:
        url: Absolute URL as reported by the sandboxed module

    Returns:
        Tuple of (scheme, authority, *path_segments). A query or fragment
        stays attached to whichever component it follows, e.g.
        ``https://host?q`` gives ``("https", "host?q")``.

    Raises:
        InvalidLocatorError: If the URL has no scheme or authority, or its
            path contains a ``..`` segment
    """
    scheme, separator, rest = url.partition("://")
    parts = urlsplit(url)
    if not separator or not scheme or not parts.scheme:
        raise InvalidLocatorError(f"URL has no scheme: {url!r}", url=url)
    if not parts.netloc:
        raise InvalidLocatorError(f"URL has no authority: {url!r}", url=url)

    # Empty and "." segments vanish when the module cleans the path
    segments = [segment for segment in rest.split("/") if segment and segment != "."]
    if ".." in segments:
        raise InvalidLocatorError(f"Path traversal in URL: {url!r}", url=url)

    return (scheme, *segments)


def url_to_cache_path(url: str, cache_root: Path) -> Path:
    """Map ``url`` to its location under ``cache_root``.

    Pure function: no network or filesystem access.
    """
    return Path(cache_root).joinpath(*cache_relpath(url))
