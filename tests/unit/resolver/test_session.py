# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

"""Unit tests for resolution sessions and the link interceptor."""

import asyncio
import gc
import logging
from typing import Any, Callable

import httpx
import pytest
from pytest_mock import MockerFixture

from mediagrab.exceptions import (
    InterceptionInProgressError,
    PersistenceError,
    PresenterUnavailableError,
    SessionStateError,
)
from mediagrab.resolver.classifier import URLClassifier
from mediagrab.resolver.metadata import CancelToken, MetadataResolver
from mediagrab.resolver.models import ResolvedLink, ResolvedMetadata, SessionState
from mediagrab.resolver.session import LinkInterceptor, ResolutionSession
from tests.types import FilterCaplogFixture
from tests.unit.types import FetcherFactory

SOCIAL_URL = "https://social.example/post/42"
DIRECT_URL = "https://cdn.example.com/video.mp4"
PAGE = (
    b'<html><head><meta property="og:title" content="Post 42" />'
    b'<meta property="og:image" content="https://social.example/thumb.png" /></head></html>'
)


class RecordingPresenter:
    """Waiting presenter that records what it was asked to display."""

    def __init__(self, unavailable: bool = False) -> None:
        self.unavailable = unavailable
        self.shown: list[str] = []
        self.dismissed: list[Any] = []
        self.on_cancel: Callable[[], None] | None = None

    def show_waiting_indicator(self, message: str, on_cancel: Callable[[], None]) -> Any:
        if self.unavailable:
            raise PresenterUnavailableError("window closed")
        self.shown.append(message)
        self.on_cancel = on_cancel
        return len(self.shown)

    def dismiss(self, handle: Any) -> None:
        self.dismissed.append(handle)


class LateResolver:
    """Resolver that ignores the cancel token and delivers once released."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.delivered = False

    async def resolve(self, url: str, cancel_token: CancelToken) -> ResolvedMetadata:
        self.started.set()
        await self.release.wait()
        self.delivered = True
        return ResolvedMetadata(title="Too late", thumbnail_url=None)


def _page_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=PAGE)


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError("no request expected")


@pytest.fixture(name="classifier")
def fixture_classifier() -> URLClassifier:
    """Return a classifier that treats `social.example` as a rich metadata source."""
    return URLClassifier(["social.example"])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    [DIRECT_URL, "https://example.com/video123"],
    ids=["media-extension", "plain-host"],
)
async def test_direct_link(
    fetcher_factory: FetcherFactory, classifier: URLClassifier, mocker: MockerFixture, url: str
) -> None:
    """Test that a direct link is handed off without resolving or showing the indicator."""
    presenter = RecordingPresenter()
    on_direct_link = mocker.Mock()
    resolver = MetadataResolver(fetcher_factory(_no_network))
    session = ResolutionSession(classifier, resolver, presenter, on_direct_link=on_direct_link)

    outcome = await session.run(url)

    assert outcome.state is SessionState.RESOLVED
    assert outcome.metadata is None
    assert session.transitions == [
        SessionState.IDLE,
        SessionState.CLASSIFYING,
        SessionState.DIRECT_LINK,
        SessionState.RESOLVED,
    ]
    on_direct_link.assert_called_once_with(url)
    assert presenter.shown == []


@pytest.mark.asyncio
async def test_rich_link_resolved(
    fetcher_factory: FetcherFactory, classifier: URLClassifier, mocker: MockerFixture
) -> None:
    """Test that a rich link is resolved, the indicator dismissed and the link persisted."""
    presenter = RecordingPresenter()
    store = mocker.Mock()
    resolver = MetadataResolver(fetcher_factory(_page_handler))
    session = ResolutionSession(
        classifier, resolver, presenter, store=store, waiting_message="Please wait"
    )

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.RESOLVED
    assert outcome.metadata == ResolvedMetadata(
        title="Post 42", thumbnail_url="https://social.example/thumb.png"
    )
    assert session.transitions == [
        SessionState.IDLE,
        SessionState.CLASSIFYING,
        SessionState.AWAITING_METADATA,
        SessionState.RESOLVED,
    ]
    assert presenter.shown == ["Please wait"]
    assert presenter.dismissed == [1]

    store.persist.assert_called_once()
    (entity,) = store.persist.call_args.args
    assert isinstance(entity, ResolvedLink)
    assert entity.key == SOCIAL_URL
    assert entity.title == "Post 42"
    assert entity.thumbnail_url == "https://social.example/thumb.png"


@pytest.mark.asyncio
async def test_cancel_before_fetch_completes(
    fetcher_factory: FetcherFactory, classifier: URLClassifier, mocker: MockerFixture
) -> None:
    """Test that cancelling from the indicator aborts the session and persists nothing."""
    fetch_started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        fetch_started.set()
        await asyncio.sleep(10)
        return httpx.Response(200, content=PAGE)

    presenter = RecordingPresenter()
    store = mocker.Mock()
    session = ResolutionSession(
        classifier, MetadataResolver(fetcher_factory(handler)), presenter, store=store
    )
    task = asyncio.create_task(session.run(SOCIAL_URL))

    await fetch_started.wait()
    assert session.is_active
    assert presenter.on_cancel is not None
    presenter.on_cancel()

    outcome = await asyncio.wait_for(task, timeout=1.0)

    assert outcome.state is SessionState.ABORTED
    assert outcome.metadata is None
    assert session.transitions[-1] is SessionState.ABORTED
    assert session.request is not None and session.request.cancelled
    assert presenter.dismissed == [1]
    store.persist.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_then_late_success_is_dropped(
    classifier: URLClassifier, mocker: MockerFixture
) -> None:
    """Test that a result arriving after cancellation is never delivered."""
    resolver = LateResolver()
    presenter = RecordingPresenter()
    store = mocker.Mock()
    session = ResolutionSession(classifier, resolver, presenter, store=store)  # type: ignore[arg-type]
    task = asyncio.create_task(session.run(SOCIAL_URL))

    await resolver.started.wait()
    session.cancel()
    outcome = await asyncio.wait_for(task, timeout=1.0)

    resolver.release.set()
    await asyncio.sleep(0.01)

    assert outcome.state is SessionState.ABORTED
    assert session.state is SessionState.ABORTED
    assert session.transitions.count(SessionState.ABORTED) == 1
    assert SessionState.RESOLVED not in session.transitions
    store.persist.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(500), httpx.Response(200, content=b"<html><body></body></html>")],
    ids=["fetch-failed", "no-title"],
)
async def test_fallback(
    fetcher_factory: FetcherFactory,
    classifier: URLClassifier,
    mocker: MockerFixture,
    response: httpx.Response,
) -> None:
    """Test that a failed fetch or a missing title falls back to the browser."""

    def handler(request: httpx.Request) -> httpx.Response:
        return response

    presenter = RecordingPresenter()
    store = mocker.Mock()
    session = ResolutionSession(
        classifier, MetadataResolver(fetcher_factory(handler)), presenter, store=store
    )

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.FALLBACK
    assert session.transitions[-2:] == [SessionState.AWAITING_METADATA, SessionState.FALLBACK]
    assert presenter.dismissed == [1]
    store.persist.assert_not_called()


@pytest.mark.asyncio
async def test_rejected_markup_falls_back(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that a page the parser rejects ends the session in FALLBACK."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html><![x<![x<![x")

    presenter = RecordingPresenter()
    session = ResolutionSession(classifier, MetadataResolver(fetcher_factory(handler)), presenter)

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.FALLBACK
    assert session.state is SessionState.FALLBACK
    assert presenter.dismissed == [1]


@pytest.mark.asyncio
async def test_unexpected_resolver_error_falls_back(
    classifier: URLClassifier,
    mocker: MockerFixture,
    caplog: Any,
    filter_caplog: FilterCaplogFixture,
) -> None:
    """Test that an unexpected resolver error is logged and ends the session in FALLBACK."""
    caplog.set_level(logging.ERROR)
    resolver = mocker.Mock()
    resolver.resolve = mocker.AsyncMock(side_effect=RuntimeError("parser exploded"))
    presenter = RecordingPresenter()
    session = ResolutionSession(classifier, resolver, presenter)

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.FALLBACK
    assert outcome.error == "unexpected error: parser exploded"
    assert session.transitions[-2:] == [SessionState.AWAITING_METADATA, SessionState.FALLBACK]
    assert presenter.dismissed == [1]
    records = filter_caplog(caplog.records, "mediagrab.resolver.session")
    assert len(records) == 1
    assert records[0].getMessage() == (
        f"Unexpected error resolving {SOCIAL_URL}, falling back to the browser"
    )
    assert records[0].exc_info is not None


@pytest.mark.asyncio
async def test_invalid_url(
    fetcher_factory: FetcherFactory, classifier: URLClassifier, mocker: MockerFixture
) -> None:
    """Test that an invalid URL falls back without any network access."""
    presenter = RecordingPresenter()
    on_direct_link = mocker.Mock()
    session = ResolutionSession(
        classifier,
        MetadataResolver(fetcher_factory(_no_network)),
        presenter,
        on_direct_link=on_direct_link,
    )

    outcome = await session.run("definitely not a url")

    assert outcome.state is SessionState.FALLBACK
    assert outcome.error is not None and "Invalid URL" in outcome.error
    assert session.transitions == [
        SessionState.IDLE,
        SessionState.CLASSIFYING,
        SessionState.FALLBACK,
    ]
    on_direct_link.assert_not_called()
    assert presenter.shown == []


@pytest.mark.asyncio
async def test_session_is_single_use(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that running a session twice raises SessionStateError."""
    session = ResolutionSession(classifier, MetadataResolver(fetcher_factory(_no_network)))
    await session.run(DIRECT_URL)

    with pytest.raises(SessionStateError):
        await session.run(DIRECT_URL)


@pytest.mark.asyncio
async def test_persistence_failure_is_logged(
    fetcher_factory: FetcherFactory,
    classifier: URLClassifier,
    mocker: MockerFixture,
    caplog: Any,
    filter_caplog: FilterCaplogFixture,
) -> None:
    """Test that a store failure is logged and does not change the outcome."""
    caplog.set_level(logging.WARNING)
    store = mocker.Mock()
    store.persist.side_effect = PersistenceError("database is locked")
    session = ResolutionSession(
        classifier, MetadataResolver(fetcher_factory(_page_handler)), store=store
    )

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.RESOLVED
    records = filter_caplog(caplog.records, "mediagrab.resolver.session")
    assert len(records) == 1
    assert records[0].getMessage() == (
        f"Failed to persist resolved link {SOCIAL_URL}: database is locked"
    )


@pytest.mark.asyncio
async def test_presenter_unavailable_cancels(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that a presenter that cannot show the indicator cancels the session."""
    presenter = RecordingPresenter(unavailable=True)
    session = ResolutionSession(
        classifier, MetadataResolver(fetcher_factory(_no_network)), presenter
    )

    outcome = await session.run(SOCIAL_URL)

    assert outcome.state is SessionState.ABORTED


@pytest.mark.asyncio
async def test_presenter_released_cancels(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that releasing the presenter while the page is fetched cancels the session."""
    fetch_started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        fetch_started.set()
        await asyncio.sleep(10)
        return httpx.Response(200, content=PAGE)

    presenter: RecordingPresenter | None = RecordingPresenter()
    session = ResolutionSession(
        classifier, MetadataResolver(fetcher_factory(handler)), presenter
    )
    task = asyncio.create_task(session.run(SOCIAL_URL))

    await fetch_started.wait()
    presenter = None
    gc.collect()

    outcome = await asyncio.wait_for(task, timeout=1.0)
    assert outcome.state is SessionState.ABORTED


@pytest.mark.asyncio
async def test_interceptor_rejects_concurrent_submission(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that a second link is rejected while the first one is resolving."""
    fetch_started = asyncio.Event()
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        fetch_started.set()
        await release.wait()
        return httpx.Response(200, content=PAGE)

    presenter = RecordingPresenter()
    interceptor = LinkInterceptor(classifier, MetadataResolver(fetcher_factory(handler)), presenter)
    first = asyncio.create_task(interceptor.resolve(SOCIAL_URL))
    await fetch_started.wait()

    assert interceptor.active_session is not None
    with pytest.raises(InterceptionInProgressError) as excinfo:
        await interceptor.resolve("https://social.example/post/43")
    assert excinfo.value.active_url == SOCIAL_URL

    release.set()
    outcome = await first

    assert outcome.state is SessionState.RESOLVED
    assert interceptor.active_session is None

    second = await interceptor.resolve(DIRECT_URL)
    assert second.state is SessionState.RESOLVED


@pytest.mark.asyncio
async def test_interceptor_cancel(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that the interceptor cancels its session in flight."""
    fetch_started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        fetch_started.set()
        await asyncio.sleep(10)
        return httpx.Response(200, content=PAGE)

    presenter = RecordingPresenter()
    interceptor = LinkInterceptor(classifier, MetadataResolver(fetcher_factory(handler)), presenter)
    task = asyncio.create_task(interceptor.resolve(SOCIAL_URL))
    await fetch_started.wait()

    interceptor.cancel()

    outcome = await asyncio.wait_for(task, timeout=1.0)
    assert outcome.state is SessionState.ABORTED


@pytest.mark.asyncio
async def test_interceptor_presenter_gone(
    fetcher_factory: FetcherFactory, classifier: URLClassifier
) -> None:
    """Test that submitting after the presenter was released raises."""
    presenter: RecordingPresenter | None = RecordingPresenter()
    interceptor = LinkInterceptor(
        classifier, MetadataResolver(fetcher_factory(_no_network)), presenter
    )
    presenter = None
    gc.collect()

    with pytest.raises(PresenterUnavailableError):
        await interceptor.resolve(SOCIAL_URL)
