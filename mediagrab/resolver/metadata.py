"""Resolve the title and thumbnail of a social media page"""

import asyncio
import logging
import threading
from typing import Callable, Optional

from bs4 import ParserRejectedMarkup

from mediagrab.configs import settings
from mediagrab.exceptions import FetchFailedError, ResolutionAbortedError
from mediagrab.resolver.extractors import extract_thumbnail_url, extract_title
from mediagrab.resolver.models import ResolvedMetadata
from mediagrab.utils.remote_fetcher import RemoteFetcher

logger = logging.getLogger(__name__)


class CancelToken:
    """Single-use cancellation flag shared between a session and its resolver.

    `cancel` may be called from any thread, e.g. the thread of a UI toolkit; waiters on
    the event loop are woken up thread-safely.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        """Return True once `cancel` was called."""
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Calling it again is a no-op."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            loop = self._loop

        if loop is None or _current_loop() is loop:
            self._event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._event.set)

    def raise_if_cancelled(self) -> None:
        """Raise `ResolutionAbortedError` if the token was cancelled."""
        if self._cancelled:
            raise ResolutionAbortedError("resolution was cancelled")

    async def wait(self) -> None:
        """Wait until the token is cancelled."""
        with self._lock:
            self._loop = asyncio.get_running_loop()
            if self._cancelled:
                return
        await self._event.wait()


class MetadataResolver:
    """Fetch a page and extract its thumbnail URL and title.

    The three steps (fetch, thumbnail extraction, title extraction) run one after the
    other and each checks the cancel token at entry. Parsing runs in the default
    worker pool so the event loop is never blocked by a large page. Once the token is
    cancelled no result is returned: `resolve` raises `ResolutionAbortedError`, even
    if the page fetch completes afterwards.
    """

    fetcher: RemoteFetcher
    fetch_retries: int

    def __init__(
        self,
        fetcher: RemoteFetcher,
        fetch_retries: int = settings.resolver.fetch_retries,
    ) -> None:
        self.fetcher = fetcher
        self.fetch_retries = fetch_retries

    async def resolve(self, url: str, cancel_token: CancelToken) -> ResolvedMetadata:
        """Resolve the metadata of the page at `url`.

        Returns:
            ResolvedMetadata: The thumbnail URL and title, either may be None.
        Raises:
            ResolutionAbortedError: If the token was cancelled before the result was ready.
            FetchFailedError: If the page content could not be fetched.
        """
        cancel_token.raise_if_cancelled()
        logger.debug(f"Fetching page content for {url}")
        content = await self._fetch_page(url, cancel_token)

        cancel_token.raise_if_cancelled()
        logger.debug(f"Parsing thumbnail URL for {url}")
        thumbnail_url = await self._extract(extract_thumbnail_url, url, content)

        cancel_token.raise_if_cancelled()
        logger.debug(f"Extracting title for {url}")
        title = await self._extract(extract_title, url, content)

        cancel_token.raise_if_cancelled()
        return ResolvedMetadata(title=title, thumbnail_url=thumbnail_url)

    async def _extract(
        self, extractor: Callable[[bytes], Optional[str]], url: str, content: bytes
    ) -> Optional[str]:
        """Run an extractor in a worker thread. Markup the parser rejects yields None."""
        try:
            return await asyncio.to_thread(extractor, content)
        except ParserRejectedMarkup as ex:
            logger.warning(f"Markup of {url} rejected by the parser: {ex}")
            return None

    async def _fetch_page(self, url: str, cancel_token: CancelToken) -> bytes:
        fetch_task = asyncio.create_task(
            self.fetcher.fetch(url, retries=self.fetch_retries, require_body=True),
            name=f"fetch-page:{url}",
        )
        cancel_task = asyncio.create_task(cancel_token.wait(), name=f"cancel-watch:{url}")
        try:
            await asyncio.wait({fetch_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not fetch_task.done():
                # The fetch may still run to completion, its result is never used.
                fetch_task.cancel()

        if cancel_token.cancelled or fetch_task.cancelled():
            raise ResolutionAbortedError(f"resolution of {url} was cancelled")

        result = fetch_task.result()
        if not result.ok:
            detail = result.code.name
            if result.status_code is not None:
                detail = f"{detail} {result.status_code}"
            raise FetchFailedError(url, detail)

        return result.content or b""


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
