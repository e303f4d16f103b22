"""Remote fetcher shared by the metadata resolver and the caches.

Ordinary network and HTTP failures never raise past this module: they are returned
as a `FetchResult` tagged with a `FetchResultCode`, so that each caller can apply
its own fallback policy.
"""

import logging
from enum import Enum
from typing import BinaryIO

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from mediagrab.configs import settings
from mediagrab.utils.http_client import create_http_client

logger = logging.getLogger(__name__)

ACCEPT_HEADER: str = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
ACCEPT_LANGUAGE_HEADER: str = "en-US,en;q=0.5"

# Status codes worth another attempt; other non-2xx codes are final.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})


class FetchResultCode(Enum):
    """Enum to capture the result of a remote fetch."""

    SUCCESS = 0
    NETWORK_ERROR = 1
    HTTP_STATUS = 2
    TIMEOUT = 3


class FetchResult(BaseModel):
    """Outcome of a remote fetch. `content` is only set on success of `fetch`."""

    url: str
    code: FetchResultCode
    content: bytes | None = None
    status_code: int | None = None
    content_type: str | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        """Return True if the fetch succeeded."""
        return self.code is FetchResultCode.SUCCESS

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the fetched content.

        Raises:
            UnicodeDecodeError: if the content is not valid in the given encoding.
        """
        return (self.content or b"").decode(encoding)


class RemoteFetcher:
    """Perform GET requests and report failures as values."""

    client: httpx.AsyncClient
    user_agents: list[str]

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        user_agents: list[str] | None = None,
        retry_wait_initial: float = settings.http.retry_wait_initial_sec,
    ) -> None:
        self.client = client or create_http_client()
        self.user_agents = list(user_agents or settings.http.user_agents)
        self.retry_wait_initial = retry_wait_initial

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def fetch(
        self,
        url: str,
        timeout: float | None = None,
        retries: int = 0,
        require_body: bool = False,
    ) -> FetchResult:
        """Fetch the URL and return its content.

        Args:
            url: URL to fetch.
            timeout: Request timeout in seconds, the client default if None.
            retries: Extra attempts after a retryable failure. Each attempt uses the next
                user agent of the rotation.
            require_body: Treat a 2xx response with an empty body as a retryable failure.
        Returns:
            FetchResult: SUCCESS with the content, or a tagged failure.
        """
        result = FetchResult(url=url, code=FetchResultCode.NETWORK_ERROR, detail="not attempted")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential_jitter(
                multiplier=self.retry_wait_initial, jitter=self.retry_wait_initial
            ),
            retry=retry_if_result(lambda res: self._should_retry(res, require_body)),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        ):
            with attempt:
                user_agent = self._user_agent(attempt.retry_state.attempt_number - 1)
                result = await self._get(url, user_agent, timeout)
            if not attempt.retry_state.outcome.failed:  # type: ignore [union-attr]
                attempt.retry_state.set_result(result)

        if require_body and result.ok and not result.content:
            return FetchResult(
                url=url,
                code=FetchResultCode.HTTP_STATUS,
                status_code=result.status_code,
                detail="empty response body",
            )
        return result

    async def fetch_to_file(
        self, url: str, file_obj: BinaryIO, timeout: float | None = None
    ) -> FetchResult:
        """Stream the response body of the URL into an open binary file.

        `OSError` raised while writing to `file_obj` is propagated to the caller, which
        owns the file.
        """
        try:
            async with self.client.stream(
                "GET",
                url,
                headers=self._headers(self._user_agent(0)),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            ) as response:
                if not response.is_success:
                    return self._status_failure(url, response)
                async for chunk in response.aiter_bytes():
                    file_obj.write(chunk)
                return FetchResult(
                    url=url,
                    code=FetchResultCode.SUCCESS,
                    status_code=response.status_code,
                    content_type=response.headers.get("Content-Type"),
                )
        except httpx.TimeoutException as ex:
            logger.debug(f"Timed out streaming {url}: {ex}")
            return FetchResult(url=url, code=FetchResultCode.TIMEOUT, detail=str(ex))
        except (httpx.HTTPError, httpx.InvalidURL) as ex:
            logger.debug(f"Failed to stream {url}: {ex}")
            return FetchResult(url=url, code=FetchResultCode.NETWORK_ERROR, detail=str(ex))

    async def close(self) -> None:
        """Close HTTP session and release resources."""
        await self.client.aclose()

    async def _get(self, url: str, user_agent: str, timeout: float | None) -> FetchResult:
        try:
            response = await self.client.get(
                url,
                headers=self._headers(user_agent),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as ex:
            logger.debug(f"Timed out fetching {url}: {ex}")
            return FetchResult(url=url, code=FetchResultCode.TIMEOUT, detail=str(ex))
        except (httpx.HTTPError, httpx.InvalidURL) as ex:
            logger.debug(f"Failed to fetch URL {url}: {ex}")
            return FetchResult(url=url, code=FetchResultCode.NETWORK_ERROR, detail=str(ex))

        if not response.is_success:
            return self._status_failure(url, response)

        return FetchResult(
            url=url,
            code=FetchResultCode.SUCCESS,
            content=response.content,
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type"),
        )

    def _status_failure(self, url: str, response: httpx.Response) -> FetchResult:
        logger.debug(f"Fetching {url} returned HTTP {response.status_code}")
        return FetchResult(
            url=url,
            code=FetchResultCode.HTTP_STATUS,
            status_code=response.status_code,
            detail=response.reason_phrase,
        )

    def _user_agent(self, attempt: int) -> str:
        return self.user_agents[attempt % len(self.user_agents)]

    @staticmethod
    def _headers(user_agent: str) -> dict[str, str]:
        return {
            "User-Agent": user_agent,
            "Accept": ACCEPT_HEADER,
            "Accept-Language": ACCEPT_LANGUAGE_HEADER,
        }

    @staticmethod
    def _should_retry(result: FetchResult, require_body: bool) -> bool:
        match result.code:
            case FetchResultCode.SUCCESS:
                return require_body and not result.content
            case FetchResultCode.HTTP_STATUS:
                return result.status_code in RETRYABLE_STATUS_CODES
            case _:
                return True
