"""Favicon cache: one PNG file per registrable domain, fetched once from an icon service."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import urlencode

from mediagrab.caches.models import FaviconEntry
from mediagrab.configs import settings
from mediagrab.exceptions import InvalidURLError
from mediagrab.utils.domain import extract_key
from mediagrab.utils.remote_fetcher import RemoteFetcher

logger = logging.getLogger(__name__)

FAVICON_SUFFIX: str = ".png"
TEMP_SUFFIX: str = ".part"


class FaviconCache:
    """Download and cache website favicons locally.

    Icons are fetched from a third-party icon service and stored as `<key>.png` in
    the favicon directory, where `<key>` is the registrable domain of the URL. A
    cached file is trusted indefinitely. Files are written under a temporary name
    and renamed into place, so a reader never observes a partially written icon.
    """

    favicon_dir: Path
    fetcher: RemoteFetcher
    service_url: str
    icon_size: int

    def __init__(
        self,
        fetcher: RemoteFetcher,
        favicon_dir: str | Path = settings.favicons.storage_dir,
        service_url: str = settings.favicons.service_url,
        icon_size: int = settings.favicons.size,
    ) -> None:
        self.fetcher = fetcher
        self.favicon_dir = Path(favicon_dir).expanduser()
        self.service_url = service_url
        self.icon_size = icon_size
        self._in_flight: dict[str, asyncio.Future[str | None]] = {}

        if not self.favicon_dir.exists():
            logger.debug(f"Favicon directory not found. Creating: {self.favicon_dir}")
        self.favicon_dir.mkdir(parents=True, exist_ok=True)

    def icon_service_url(self, key: str) -> str:
        """Return the icon service URL for a cache key."""
        query = urlencode({"domain": key, "sz": self.icon_size})
        return f"{self.service_url}?{query}"

    def cached_path(self, url: str) -> str | None:
        """Return the path of the cached favicon for the URL without fetching it."""
        try:
            key = extract_key(url)
        except InvalidURLError:
            return None
        path = self._path_for(key)
        return str(path) if path.is_file() else None

    async def get(self, url: str) -> str | None:
        """Return the path to the favicon of the URL, downloading it on a cache miss.

        Returns:
            Optional[str]: Absolute path of the cached icon, or None if the URL is
            invalid or the icon could not be downloaded.
        """
        try:
            key = extract_key(url)
        except InvalidURLError as ex:
            logger.debug(f"Invalid URL, cannot extract domain: {ex}")
            return None

        path = self._path_for(key)
        if path.is_file():
            logger.debug(f"Returning cached favicon for {key} at: {path}")
            return str(path)

        # Join a download that is already in flight for this key.
        if (pending := self._in_flight.get(key)) is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        result: str | None = None
        try:
            entry = await self._download(key)
            result = str(entry.file_path) if entry else None
        except asyncio.CancelledError:
            # Joined callers get no icon, only the owner sees the cancellation.
            future.set_result(None)
            raise
        except Exception as ex:
            logger.warning(f"Unexpected error downloading favicon for {key}: {ex}")
        finally:
            del self._in_flight[key]

        future.set_result(result)
        return result

    get_favicon_path = get

    def clear(self) -> int:
        """Delete every cached favicon and return the number of removed files."""
        removed = 0
        for path in self.favicon_dir.glob(f"*{FAVICON_SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        logger.info(f"Cleared {removed} cached favicon(s) from {self.favicon_dir}")
        return removed

    async def _download(self, key: str) -> FaviconEntry | None:
        icon_url = self.icon_service_url(key)
        logger.debug(f"Attempting to download favicon for {key} from: {icon_url}")

        fd, temp_name = tempfile.mkstemp(
            prefix=f"{key}.", suffix=TEMP_SUFFIX, dir=self.favicon_dir
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as temp_file:
                result = await self.fetcher.fetch_to_file(icon_url, temp_file)

            if not result.ok:
                logger.debug(
                    f"Error downloading favicon for {key}: {result.code.name}",
                    extra={"status_code": result.status_code, "detail": result.detail},
                )
                return None

            if temp_path.stat().st_size == 0:
                logger.debug(f"Icon service returned an empty favicon for {key}")
                return None

            path = self._path_for(key)
            os.replace(temp_path, path)
            logger.debug(f"Successfully saved favicon for {key} at: {path}")
            return FaviconEntry(key=key, file_path=path)
        except OSError as ex:
            logger.warning(f"Failed to write favicon for {key}: {ex}")
            return None
        finally:
            temp_path.unlink(missing_ok=True)

    def _path_for(self, key: str) -> Path:
        return (self.favicon_dir / f"{key}{FAVICON_SUFFIX}").absolute()
