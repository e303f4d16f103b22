"""Ad-block host list, fetched from a remote source with a built-in fallback."""

import asyncio
import logging
import time
from urllib.parse import urlsplit

from mediagrab import cron
from mediagrab.caches.models import BlockListSnapshot
from mediagrab.configs import settings
from mediagrab.utils.remote_fetcher import RemoteFetcher

logger = logging.getLogger(__name__)

COMMENT_MARKER: str = "#"


def parse_host_list(content: str) -> frozenset[str]:
    """Parse a line oriented host list.

    Blank lines and lines starting with `#` are dropped, remaining lines are trimmed
    and kept verbatim.
    """
    return frozenset(
        line.strip()
        for line in content.splitlines()
        if line.strip() and not line.startswith(COMMENT_MARKER)
    )


class BlockListCache:
    """Hold the set of ad-serving hostnames used for content filtering.

    `get_hosts` never blocks and never returns an empty set: until a refresh succeeds
    it returns the built-in default hosts. A failed refresh keeps the previous
    snapshot. Each refresh gets a generation number and a fetched list only replaces
    the active snapshot when it comes from the latest refresh started. A result from
    an older refresh is discarded even when it arrives first.
    """

    fetcher: RemoteFetcher
    source_url: str
    refresh_interval_sec: int
    cron_task: asyncio.Task | None

    def __init__(
        self,
        fetcher: RemoteFetcher,
        source_url: str = settings.blocklist.source_url,
        default_hosts: list[str] | frozenset[str] | None = None,
        refresh_interval_sec: int = settings.blocklist.refresh_interval_sec,
    ) -> None:
        self.fetcher = fetcher
        self.source_url = source_url
        self.refresh_interval_sec = refresh_interval_sec
        self.cron_task = None
        self._snapshot = BlockListSnapshot(
            hosts=frozenset(default_hosts or settings.blocklist.default_hosts),
            source_timestamp=time.time(),
            is_default=True,
        )
        self._latest_generation = 0
        self._refresh_task: asyncio.Task[bool] | None = None

    @property
    def snapshot(self) -> BlockListSnapshot:
        """Return the active snapshot."""
        return self._snapshot

    def get_hosts(self) -> frozenset[str]:
        """Return the current set of ad-block hostnames."""
        logger.debug(f"Returning {len(self._snapshot.hosts)} ad-block host(s)")
        return self._snapshot.hosts

    get_blocked_hosts = get_hosts

    def is_blocked(self, url: str) -> bool:
        """Check whether the host of the URL, or one of its parent domains, is blocked."""
        try:
            hostname = urlsplit(url.strip()).hostname
        except ValueError:
            return False
        if not hostname:
            return False

        hosts = self._snapshot.hosts
        labels = hostname.rstrip(".").split(".")
        return any(".".join(labels[i:]) in hosts for i in range(len(labels)))

    def refresh(self, force: bool = False) -> asyncio.Task[bool]:
        """Fetch the remote host list in the background.

        A call made while a refresh is in flight joins it, unless `force` is set, in
        which case a new, newer generation fetch is started alongside.

        Returns:
            The refresh task. It resolves to True if its result became the active
            snapshot, False otherwise. It never raises.
        """
        if self._refresh_task is not None and not self._refresh_task.done() and not force:
            logger.debug("Ad-block host refresh already in flight, joining it")
            return self._refresh_task

        self._latest_generation += 1
        generation = self._latest_generation
        logger.debug(f"Fetching ad-block hosts from remote source (generation {generation})")
        task = asyncio.create_task(
            self._refresh(generation), name=f"blocklist-refresh-{generation}"
        )
        self._refresh_task = task
        return task

    async def initialize(self) -> None:
        """Start the first refresh, and the periodic one when an interval is configured."""
        self.refresh()
        if self.refresh_interval_sec > 0:
            cron_job = cron.Job(
                name="refresh_blocklist",
                interval=self.refresh_interval_sec,
                condition=self._should_refresh,
                task=self._run_refresh,
            )
            self.cron_task = asyncio.create_task(cron_job())

    async def shutdown(self) -> None:
        """Cancel the periodic refresh and any refresh in flight."""
        for task in (self.cron_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.cron_task = None

    async def _run_refresh(self) -> None:
        await self.refresh()

    def _should_refresh(self) -> bool:
        return (time.time() - self._snapshot.source_timestamp) >= self.refresh_interval_sec

    async def _refresh(self, generation: int) -> bool:
        try:
            result = await self.fetcher.fetch(self.source_url)
            if not result.ok:
                logger.warning(
                    "Remote fetch of ad-block hosts failed, keeping the current list",
                    extra={"code": result.code.name, "status_code": result.status_code},
                )
                return False

            hosts = parse_host_list(result.text())
            if not hosts:
                logger.warning("Remote ad-block host list is empty, keeping the current list")
                return False

            logger.debug(f"Parsed {len(hosts)} valid host(s) from remote file")
            return self._apply(
                BlockListSnapshot(
                    hosts=hosts, source_timestamp=time.time(), generation=generation
                )
            )
        except UnicodeDecodeError as ex:
            logger.warning(f"Remote ad-block host list is not valid UTF-8: {ex}")
            return False
        except Exception as ex:
            logger.warning(f"Unexpected error refreshing ad-block hosts: {ex}")
            return False

    def _apply(self, snapshot: BlockListSnapshot) -> bool:
        if snapshot.generation != self._latest_generation:
            logger.info(
                f"Discarding stale ad-block host list (generation {snapshot.generation}, "
                f"latest {self._latest_generation})"
            )
            return False

        self._snapshot = snapshot
        logger.info(f"Ad-block host list updated. Total hosts: {len(snapshot.hosts)}")
        return True
