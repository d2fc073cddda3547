"""
fetch_sources.py

Content acquisition for filter list sources.

Behavior:
 - `http://` and `https://` sources are downloaded with aiohttp; anything else
   is read from the local filesystem.
 - Retries transient failures (timeouts, connection errors, 429, 5xx) with
   exponential backoff + jitter; 4xx and SSL errors fail immediately.
 - Empty content is an error unless explicitly allowed.
 - Include paths are resolved against the including source (URL-relative for
   remote sources, directory-join for local ones).
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import aiohttp

from filterlist_compiler import config, utils
from filterlist_compiler.errors import (
    FileSystemError,
    NetworkError,
    NetworkTimeoutError,
)

logger = logging.getLogger(__name__)


# ----------------------------------------
# Helpers
# ----------------------------------------
def _should_retry_status(status: int) -> bool:
    """Return True if HTTP status is retryable."""
    return status == 429 or 500 <= status < 600


def resolve_include_path(include_path: str, base_path: str) -> str:
    """
    Resolve an `!#include` target against the including source.

    Absolute paths and URLs are returned unchanged. A URL base is resolved with
    standard relative-URL rules; a filesystem base has everything after its
    last separator replaced by `include_path` (no `..` normalization).
    """
    include_path = include_path.strip()
    if utils.is_absolute_path(include_path):
        return include_path
    if utils.is_url(base_path):
        return urljoin(base_path, include_path)
    sep_idx = max(base_path.rfind("/"), base_path.rfind("\\"))
    if sep_idx == -1:
        return include_path
    return base_path[: sep_idx + 1] + include_path


@dataclass
class FetchOptions:
    timeout: float = config.DEFAULT_TIMEOUT
    retries: int = config.DEFAULT_RETRIES
    retry_delay: float = config.DEFAULT_RETRY_DELAY
    retry_jitter: float = config.DEFAULT_RETRY_JITTER
    max_redirects: int = config.DEFAULT_MAX_REDIRECTS
    user_agent: str = config.USER_AGENT
    allow_empty_response: bool = False


# ----------------------------------------
# Fetcher
# ----------------------------------------
class ContentFetcher:
    """
    Fetch raw source text from URLs or local files.

    A session may be passed in (anything exposing aiohttp's `get()` async
    context manager); otherwise one is created on first use and closed by
    `close()` or on leaving `async with`.
    """

    def __init__(
        self,
        options: FetchOptions | None = None,
        session: aiohttp.ClientSession | None = None,
        log: logging.Logger | None = None,
    ):
        self.options = options or FetchOptions()
        self._session = session
        self._owns_session = session is None
        self.log = log or logger

    async def __aenter__(self) -> "ContentFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def fetch(self, source: str, allow_empty: bool | None = None) -> str:
        """Return the text of `source`, dispatching on URL vs. local path."""
        if allow_empty is None:
            allow_empty = self.options.allow_empty_response
        if utils.is_url(source):
            return await self.fetch_url(source, allow_empty)
        return self.read_file(source, allow_empty)

    def read_file(self, path: str, allow_empty: bool = False) -> str:
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise FileSystemError(
                path, FileSystemError.NOT_FOUND, "file not found"
            ) from None
        except PermissionError:
            raise FileSystemError(
                path, FileSystemError.PERMISSION_DENIED, "permission denied"
            ) from None
        except OSError as exc:
            raise FileSystemError(path, FileSystemError.IO, str(exc)) from exc
        if not allow_empty and not text.strip():
            raise FileSystemError(path, FileSystemError.EMPTY, "file is empty")
        self.log.debug("Read %d characters from %s", len(text), path)
        return text

    async def fetch_url(self, url: str, allow_empty: bool = False) -> str:
        """
        Download `url`, retrying retryable failures.

        Attempts are sequential: 1 + `retries` at most, sleeping
        `retry_delay * 2**attempt` plus up to `retry_jitter` of that between
        them. The last error is raised once attempts are exhausted.
        """
        opts = self.options
        attempt = 0
        while True:
            try:
                return await self._get(url, allow_empty)
            except NetworkError as exc:
                if not exc.retryable or attempt >= opts.retries:
                    raise
                base = opts.retry_delay * (2 ** attempt)
                delay = base + random.uniform(0, base * opts.retry_jitter)
                attempt += 1
                self.log.warning(
                    "Retrying %s in %.2fs (attempt %d/%d): %s",
                    url,
                    delay,
                    attempt,
                    opts.retries,
                    exc,
                )
                await asyncio.sleep(delay)

    async def _get(self, url: str, allow_empty: bool) -> str:
        opts = self.options
        headers = {"User-Agent": opts.user_agent}
        timeout_obj = aiohttp.ClientTimeout(total=opts.timeout)
        try:
            async with self._get_session().get(
                url,
                headers=headers,
                timeout=timeout_obj,
                allow_redirects=True,
                max_redirects=opts.max_redirects,
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise NetworkError(
                        url,
                        f"HTTP {resp.status}",
                        status=resp.status,
                        retryable=_should_retry_status(resp.status),
                    )
                text = await resp.text(encoding="utf-8", errors="replace")
        except asyncio.TimeoutError:
            raise NetworkTimeoutError(url, opts.timeout) from None
        except aiohttp.ClientSSLError as exc:
            raise NetworkError(url, f"SSL certificate error - {exc}") from exc
        except aiohttp.TooManyRedirects as exc:
            raise NetworkError(url, f"too many redirects (max {opts.max_redirects})") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(
                url, f"Connection error - {type(exc).__name__}", retryable=True
            ) from exc

        if not allow_empty and not text.strip():
            raise NetworkError(url, "empty response", status=resp.status)
        self.log.debug("Downloaded %d characters from %s", len(text), url)
        return text
