"""
Resource fetcher.

Resolves a named set of locators (http(s) URLs or bare asset filenames) to
raw bytes. A batch is fetched concurrently, one task per key, and is
all-or-nothing: the first failure cancels the remaining fetches and is
raised to the caller without building a partial bundle.
"""
import contextlib
import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Union

import requests

from ogimg.domain.models import ResourceBundle, ResourceLocator
from ogimg.errors import FetchError, LocatorError, PreviewError
from ogimg.services.cancel import CancelToken
from ogimg.settings import settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
# Upper bound on a single wait() so parent cancellation without a deadline is noticed.
POLL_INTERVAL_SEC = 0.1

LocatorLike = Union[str, ResourceLocator]


class ResourceFetcher(Protocol):
    """Anything that can turn a batch of locators into a bundle."""

    def fetch_all(self, locators: Mapping[str, LocatorLike], cancel: Optional[CancelToken] = None) -> ResourceBundle:
        ...


class RemoteFetcher:
    """
    Fetches resources over HTTP or from the sandboxed asset directory.

    Args:
        assets_dir: Root for local asset filenames (read-only).
        session: requests.Session to issue GETs with.
        timeout: Per-request timeout in seconds; shortened to the caller's deadline.
        body_limit: Maximum body size in bytes; larger bodies fail the fetch.
        max_workers: Upper bound on concurrent fetches in one batch.
    """

    def __init__(
        self,
        assets_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        body_limit: Optional[int] = None,
        max_workers: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        self.assets_dir = Path(assets_dir or settings.ASSETS_DIR)
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT
        self.body_limit = body_limit if body_limit is not None else settings.FETCH_BODY_LIMIT
        self.max_workers = max_workers or settings.FETCH_WORKERS
        self.headers = {"User-Agent": user_agent or settings.USER_AGENT}

    def fetch(self, locator: LocatorLike, cancel: Optional[CancelToken] = None) -> bytes:
        """Fetch a single resource."""
        if not isinstance(locator, ResourceLocator):
            locator = ResourceLocator.parse(locator)
        cancel = cancel or CancelToken()
        cancel.raise_if_cancelled(locator.raw)

        logger.info("getting a resource: %s", locator.raw)
        if locator.is_remote:
            return self._get_remote(locator.value, cancel)
        return self._read_local(locator.value, cancel)

    def fetch_all(self, locators: Mapping[str, LocatorLike], cancel: Optional[CancelToken] = None) -> ResourceBundle:
        """
        Fetch every locator concurrently.

        Returns a bundle holding every key, or raises the first failure.
        Results are collected from each task's future by the calling thread
        only, so no two tasks ever write to the same aggregate.
        """
        parsed: Dict[str, ResourceLocator] = {}
        for key, raw in locators.items():
            try:
                parsed[key] = raw if isinstance(raw, ResourceLocator) else ResourceLocator.parse(raw)
            except LocatorError as exc:
                raise exc.with_context(stage=key)
        if not parsed:
            return ResourceBundle({})

        batch = cancel.child() if cancel is not None else CancelToken()
        executor = ThreadPoolExecutor(
            max_workers=min(len(parsed), self.max_workers),
            thread_name_prefix="ogimg-fetch",
        )
        futures: Dict[Future, str] = {
            executor.submit(self.fetch, locator, batch): key for key, locator in parsed.items()
        }
        results: Dict[str, bytes] = {}
        try:
            pending = set(futures)
            while pending:
                if batch.cancelled:
                    raise FetchError("cancelled or deadline exceeded while fetching resources")
                remaining = batch.remaining()
                timeout = POLL_INTERVAL_SEC if remaining is None else min(POLL_INTERVAL_SEC, remaining)
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_EXCEPTION)
                for fut in done:
                    key = futures[fut]
                    exc = fut.exception()
                    if exc is None:
                        results[key] = fut.result()
                        continue
                    if isinstance(exc, PreviewError):
                        raise exc.with_context(stage=key)
                    raise FetchError(f"unexpected fetch failure: {exc}", stage=key) from exc
        except BaseException:
            batch.cancel()
            raise
        finally:
            # Do not wait for slow siblings; they observe `batch` and stop on their own.
            executor.shutdown(wait=False, cancel_futures=True)

        return ResourceBundle(results)

    def _read_local(self, filename: str, cancel: CancelToken) -> bytes:
        root = self.assets_dir.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            raise LocatorError("asset path escapes the asset directory", resource=filename)
        try:
            size = path.stat().st_size
            if size > self.body_limit:
                raise FetchError(f"asset exceeds {self.body_limit} bytes", resource=filename)
            data = path.read_bytes()
        except OSError as exc:
            raise FetchError(f"could not open a file with this filename: {exc}", resource=filename) from exc
        cancel.raise_if_cancelled(filename)
        return data

    def _get_remote(self, url: str, cancel: CancelToken) -> bytes:
        timeout = self.timeout
        remaining = cancel.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise FetchError("deadline exceeded before request", resource=url)
            timeout = min(timeout, remaining)

        buf = bytearray()
        try:
            resp = self.session.get(url, headers=self.headers, timeout=timeout, stream=True)
            with contextlib.closing(resp):
                resp.raise_for_status()
                length = resp.headers.get("Content-Length")
                if length and str(length).isdigit() and int(length) > self.body_limit:
                    raise FetchError(f"body of {length} bytes exceeds {self.body_limit} bytes", resource=url)
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    cancel.raise_if_cancelled(url)
                    buf.extend(chunk)
                    if len(buf) > self.body_limit:
                        raise FetchError(f"body exceeds {self.body_limit} bytes", resource=url)
        except requests.RequestException as exc:
            raise FetchError(f"could not get a resource by the url: {exc}", resource=url) from exc
        return bytes(buf)
