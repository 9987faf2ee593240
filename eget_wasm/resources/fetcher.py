"""Streaming HTTP downloads on behalf of the sandboxed module.

This module provides the ResourceFetcher class, which performs one bounded
download of a URL into a local file. It streams the body to disk, reports
progress, and maps every failure onto the FetchError taxonomy so callers
can decide whether a retry makes sense.
"""

import hashlib
import logging
import os
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Callable
from urllib.parse import urlsplit

import httpx

from eget_wasm.exceptions import (
    FetchError,
    FetchTimeoutError,
    HTTPStatusError,
    InvalidLocatorError,
    NetworkError,
    RateLimitedError,
    ResourceNotFoundError,
    ServerError,
)
from eget_wasm.models import (
    DEFAULT_TIMEOUT_S,
    UNKNOWN_SIZE,
    FetchResult,
    ProgressCallback,
)

logger = logging.getLogger(__name__)

USER_AGENT = "eget-wasm (+https://github.com/zyedidia/eget)"
GITHUB_API_HOSTS = {"api.github.com"}


def resolve_token(value: str | None) -> str | None:
    """Resolve a token setting, reading it from a file for ``@path`` values.

    Mirrors eget's EGET_GITHUB_TOKEN convention.
    """
    if not value:
        return None
    if not value.startswith("@"):
        return value
    token_path = Path(value[1:]).expanduser()
    try:
        return token_path.read_text(encoding="utf-8").rstrip("\r\n") or None
    except OSError as e:
        logger.warning("Could not read GitHub token from %s: %s", token_path, e)
        return None


def parse_retry_after(headers: httpx.Headers, now: datetime | None = None) -> datetime | None:
    """Derive the earliest retry time from rate-limit response headers.

    Checks ``Retry-After`` (delta seconds or HTTP date) first, then GitHub's
    ``X-RateLimit-Reset`` epoch seconds.
    """
    now = now or datetime.now(timezone.utc)

    retry_after = headers.get("retry-after")
    if retry_after:
        retry_after = retry_after.strip()
        if retry_after.isdigit():
            return now + timedelta(seconds=int(retry_after))
        try:
            parsed = parsedate_to_datetime(retry_after)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

    reset = headers.get("x-ratelimit-reset")
    if reset and reset.strip().isdigit():
        return datetime.fromtimestamp(int(reset.strip()), tz=timezone.utc)

    return None


def classify_status(response: httpx.Response, url: str) -> FetchError | None:
    """Return the error matching a non-success response, or None on 2xx."""
    status = response.status_code
    if 200 <= status < 300:
        return None

    reason = response.reason_phrase or ""
    message = f"HTTP {status}: {reason}".rstrip(": ") + f" ({url})"

    if status in (404, 410):
        return ResourceNotFoundError(message, url=url, status_code=status)
    if status == 429 or (
        status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
    ):
        return RateLimitedError(
            message,
            url=url,
            status_code=status,
            retry_after=parse_retry_after(response.headers),
        )
    if 500 <= status < 600:
        return ServerError(message, url=url, status_code=status)
    return HTTPStatusError(message, url=url, status_code=status)


def _advertised_size(response: httpx.Response) -> int:
    # A compressed transfer's length says nothing about the decoded bytes.
    encoding = response.headers.get("content-encoding", "identity").strip().lower()
    if encoding not in ("", "identity"):
        return UNKNOWN_SIZE
    length = response.headers.get("content-length")
    if length and length.strip().isdigit():
        return int(length.strip())
    return UNKNOWN_SIZE


class ResourceFetcher:
    """Downloads URLs into local files with progress and a timeout.

    The body is streamed into a temporary sibling of the destination and
    renamed into place once complete, so a destination path never holds a
    partial download and concurrent writers of the same URL resolve to
    last-writer-wins.

    Example:
        >>> fetcher = ResourceFetcher(github_token=os.environ.get("GITHUB_TOKEN"))
        >>> result = fetcher.fetch(
        ...     "https://api.github.com/repos/zyedidia/eget/releases/latest",
        ...     Path(".eget/https/api.github.com/repos/zyedidia/eget/releases/latest"),
        ...     on_progress=lambda url, current, total: print(current, total),
        ...     timeout_s=30,
        ... )
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        github_token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        chunk_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the fetcher.

        Args:
            client: Optional shared httpx.Client. If None, a client is created
                    for each fetch and closed afterwards.
            github_token: Token (or ``@path`` to a token file) sent to the
                          GitHub API
            timeout_s: Default timeout for a whole download
            chunk_size: Re-chunk the body to this size. None hands data on
                        as it arrives, so the deadline is checked on every read
            clock: Monotonic clock used for the overall deadline
        """
        self._client = client
        self._github_token = resolve_token(github_token)
        self.timeout_s = timeout_s
        self.chunk_size = chunk_size
        self._clock = clock

    def _headers(self, url: str) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        host = urlsplit(url).hostname or ""
        if self._github_token and host in GITHUB_API_HOSTS:
            headers["Authorization"] = f"token {self._github_token}"
        return headers

    def fetch(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None = None,
        timeout_s: float | None = None,
    ) -> FetchResult:
        """Download ``url`` into ``destination``.

        Args:
            url: URL to download
            destination: Local file path to write
            on_progress: Optional callback ``(url, current, total)``. Called with
                         ``current=0`` before any bytes are written, after each
                         chunk, and once after the last byte. ``total`` is -1
                         when unknown, except on the final call which reports
                         the received size as both values.
            timeout_s: Timeout for the entire operation (connect + transfer).
                       Defaults to the fetcher's timeout.

        Returns:
            FetchResult with the number of bytes written and their SHA-256

        Raises:
            ResourceNotFoundError: On 404/410
            RateLimitedError: On 429, or 403 with an exhausted rate limit
            ServerError: On 5xx
            FetchTimeoutError: If the download does not finish in time
            NetworkError: On transport failures
            HTTPStatusError: On any other non-success status
            InvalidLocatorError: If httpx rejects the URL
        """
        destination = Path(destination)
        effective_timeout = self.timeout_s if timeout_s is None else timeout_s
        deadline = self._clock() + effective_timeout

        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.part")

        logger.debug("Downloading %s -> %s", url, destination)

        try:
            if self._client is not None:
                result = self._stream(
                    self._client, url, destination, partial, on_progress,
                    effective_timeout, deadline,
                )
            else:
                with httpx.Client(follow_redirects=True) as client:
                    result = self._stream(
                        client, url, destination, partial, on_progress,
                        effective_timeout, deadline,
                    )
        except httpx.TimeoutException as e:
            partial.unlink(missing_ok=True)
            raise FetchTimeoutError(
                f"Timed out after {effective_timeout}s downloading {url}: {e}",
                url=url,
            ) from e
        except httpx.InvalidURL as e:
            partial.unlink(missing_ok=True)
            raise InvalidLocatorError(f"Invalid URL {url!r}: {e}", url=url) from e
        except httpx.RequestError as e:
            partial.unlink(missing_ok=True)
            raise NetworkError(f"Network error downloading {url}: {e}", url=url) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        logger.debug("Saved %d bytes to %s", result.bytes, destination)
        return result

    def _check_deadline(self, url: str, deadline: float, timeout_s: float) -> None:
        if self._clock() > deadline:
            raise FetchTimeoutError(
                f"Timed out after {timeout_s}s downloading {url}", url=url
            )

    def _stream(
        self,
        client: httpx.Client,
        url: str,
        destination: Path,
        partial: Path,
        on_progress: ProgressCallback | None,
        timeout_s: float,
        deadline: float,
    ) -> FetchResult:
        remaining = max(deadline - self._clock(), 0.0)
        with client.stream(
            "GET",
            url,
            headers=self._headers(url),
            timeout=httpx.Timeout(remaining),
            follow_redirects=True,
        ) as response:
            error = classify_status(response, url)
            if error is not None:
                raise error

            self._check_deadline(url, deadline, timeout_s)
            total = _advertised_size(response)
            received = 0
            digest = hashlib.sha256()

            # A read that trickles in below the read timeout never trips it,
            # so the response is closed once the overall deadline passes.
            expired = threading.Event()

            def expire() -> None:
                expired.set()
                response.close()

            watchdog = threading.Timer(max(deadline - self._clock(), 0.0), expire)
            watchdog.daemon = True
            watchdog.start()

            if on_progress:
                on_progress(url, 0, total)

            try:
                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes(self.chunk_size):
                        self._check_deadline(url, deadline, timeout_s)
                        f.write(chunk)
                        digest.update(chunk)
                        received += len(chunk)
                        if on_progress:
                            on_progress(url, received, total)
            except (httpx.HTTPError, httpx.StreamError) as e:
                if expired.is_set():
                    raise FetchTimeoutError(
                        f"Timed out after {timeout_s}s downloading {url}", url=url
                    ) from e
                raise
            finally:
                watchdog.cancel()

            if expired.is_set():
                raise FetchTimeoutError(
                    f"Timed out after {timeout_s}s downloading {url}", url=url
                )
            self._check_deadline(url, deadline, timeout_s)

            if total != UNKNOWN_SIZE and received != total:
                raise NetworkError(
                    f"Incomplete download of {url}: got {received} of {total} bytes",
                    url=url,
                )

        os.replace(partial, destination)

        if on_progress:
            on_progress(url, received, received)

        return FetchResult(
            url=url,
            path=destination,
            bytes=received,
            sha256=digest.hexdigest(),
        )
