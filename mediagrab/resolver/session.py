"""Resolution sessions: bind a waiting indicator to a metadata resolution.

A session takes one URL through

    IDLE -> CLASSIFYING -> {DIRECT_LINK | AWAITING_METADATA} -> {RESOLVED | ABORTED | FALLBACK}

and ends in exactly one of the three terminal states. A session never raises for an
ordinary failure: invalid input, network errors and missing titles all end in
FALLBACK, user cancellation ends in ABORTED.
"""

import asyncio
import logging
import weakref
from typing import Any, Optional

from mediagrab.configs import settings
from mediagrab.exceptions import (
    FetchFailedError,
    InterceptionInProgressError,
    InvalidURLError,
    PresenterUnavailableError,
    ResolutionAbortedError,
    SessionStateError,
)
from mediagrab.resolver.classifier import URLClassifier
from mediagrab.resolver.metadata import CancelToken, MetadataResolver
from mediagrab.resolver.models import (
    Classification,
    ResolutionOutcome,
    ResolutionRequest,
    ResolvedLink,
    ResolvedMetadata,
    SessionState,
)
from mediagrab.resolver.protocol import DirectLinkHandler, EntityStore, WaitingPresenter

logger = logging.getLogger(__name__)


class ResolutionSession:
    """Resolve a single URL. A session is single-use.

    The presenter is held by weak reference: if it is garbage collected, or raises
    `PresenterUnavailableError`, while the metadata is being resolved, the session is
    cancelled. A cancelled session ends in ABORTED and drops the resolver result,
    however late it arrives.
    """

    classifier: URLClassifier
    resolver: MetadataResolver
    state: SessionState
    transitions: list[SessionState]
    request: Optional[ResolutionRequest]

    def __init__(
        self,
        classifier: URLClassifier,
        resolver: MetadataResolver,
        presenter: Optional[WaitingPresenter] = None,
        *,
        store: Optional[EntityStore] = None,
        on_direct_link: Optional[DirectLinkHandler] = None,
        waiting_message: str = settings.resolver.waiting_message,
    ) -> None:
        self.classifier = classifier
        self.resolver = resolver
        self.store = store
        self.on_direct_link = on_direct_link
        self.waiting_message = waiting_message
        self.state = SessionState.IDLE
        self.transitions = [SessionState.IDLE]
        self.request = None
        self._token = CancelToken()
        self._presenter_ref: Optional[weakref.ReferenceType[WaitingPresenter]] = (
            weakref.ref(presenter, self._on_presenter_lost) if presenter is not None else None
        )

    @property
    def is_active(self) -> bool:
        """Return True while the session is running."""
        return self.state is not SessionState.IDLE and not self.state.is_terminal

    def cancel(self) -> None:
        """Cancel the session. Safe to call from any thread, and more than once."""
        if self.state.is_terminal:
            return
        logger.debug("Resolution cancel requested")
        self._token.cancel()

    async def run(self, url: str) -> ResolutionOutcome:
        """Take the URL through the session and return its outcome.

        Raises:
            SessionStateError: If the session was already run.
        """
        if self.state is not SessionState.IDLE:
            raise SessionStateError(f"session already {self.state.value}")

        self.request = ResolutionRequest(url=url)
        self._transition(SessionState.CLASSIFYING)

        classification = self.classifier.classify(url)
        self.request.classification = classification
        logger.debug(f"Classified {url!r} as {classification.value}")

        match classification:
            case Classification.INVALID:
                logger.info(f"Invalid URL provided: {url!r}")
                error = InvalidURLError(url, "not an http(s) URL with a parseable host")
                return self._finish(SessionState.FALLBACK, error=str(error))
            case Classification.DIRECT_LINK:
                self._transition(SessionState.DIRECT_LINK)
                self._hand_off(url)
                return self._finish(SessionState.RESOLVED)
            case Classification.RICH_METADATA:
                self._transition(SessionState.AWAITING_METADATA)
                return await self._await_metadata(url)

    async def _await_metadata(self, url: str) -> ResolutionOutcome:
        handle = self._show_indicator()
        try:
            metadata = await self._resolve(url)
        except ResolutionAbortedError:
            logger.debug(f"Resolution of {url} aborted")
            return self._finish(SessionState.ABORTED)
        except FetchFailedError as ex:
            logger.info(f"Falling back to the browser for {url}: {ex}")
            return self._finish(SessionState.FALLBACK, error=str(ex))
        except Exception as ex:
            logger.exception(f"Unexpected error resolving {url}, falling back to the browser")
            return self._finish(SessionState.FALLBACK, error=f"unexpected error: {ex}")
        finally:
            self._dismiss_indicator(handle)

        if self._token.cancelled:
            return self._finish(SessionState.ABORTED)

        if not metadata.has_title:
            logger.info(f"No title found for {url}, falling back to the browser")
            return self._finish(SessionState.FALLBACK, metadata=metadata)

        await self._persist(url, metadata)
        return self._finish(SessionState.RESOLVED, metadata=metadata)

    async def _resolve(self, url: str) -> ResolvedMetadata:
        """Run the resolver, racing it against the cancel token."""
        self._token.raise_if_cancelled()

        resolve_task = asyncio.create_task(
            self.resolver.resolve(url, self._token), name=f"resolve:{url}"
        )
        cancel_task = asyncio.create_task(self._token.wait(), name=f"session-cancel:{url}")
        try:
            await asyncio.wait({resolve_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()

        if self._token.cancelled:
            if not resolve_task.done():
                resolve_task.cancel()
            resolve_task.add_done_callback(_discard_result)
            raise ResolutionAbortedError(f"resolution of {url} was cancelled")

        return resolve_task.result()

    def _show_indicator(self) -> Any:
        presenter = self._presenter()
        if presenter is None:
            return None
        try:
            return presenter.show_waiting_indicator(self.waiting_message, self.cancel)
        except PresenterUnavailableError:
            logger.debug("Presenter unavailable when showing the waiting indicator")
            self.cancel()
            return None

    def _dismiss_indicator(self, handle: Any) -> None:
        presenter = self._presenter()
        if presenter is None or handle is None:
            return
        try:
            presenter.dismiss(handle)
        except PresenterUnavailableError:
            logger.debug("Presenter unavailable when dismissing the waiting indicator")

    def _presenter(self) -> Optional[WaitingPresenter]:
        return self._presenter_ref() if self._presenter_ref is not None else None

    def _on_presenter_lost(self, _ref: weakref.ReferenceType) -> None:
        logger.debug("Presenter was released, cancelling the resolution")
        self.cancel()

    def _hand_off(self, url: str) -> None:
        if self.on_direct_link is None:
            return
        try:
            self.on_direct_link(url)
        except Exception as ex:
            logger.warning(f"Direct link handler failed for {url}: {ex}")

    async def _persist(self, url: str, metadata: ResolvedMetadata) -> None:
        if self.store is None:
            return
        entity = ResolvedLink(url=url, title=metadata.title or "", thumbnail_url=metadata.thumbnail_url)
        try:
            await asyncio.to_thread(self.store.persist, entity)
        except Exception as ex:
            logger.warning(f"Failed to persist resolved link {url}: {ex}")

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"Session {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def _finish(
        self,
        state: SessionState,
        metadata: Optional[ResolvedMetadata] = None,
        error: Optional[str] = None,
    ) -> ResolutionOutcome:
        assert self.request is not None
        if self.request.is_terminal:
            raise SessionStateError(f"session already ended in {self.state.value}")

        if state is SessionState.ABORTED:
            self.request.cancelled = True
        else:
            self.request.completed = True
        self._transition(state)
        return ResolutionOutcome(url=self.request.url, state=state, metadata=metadata, error=error)


class LinkInterceptor:
    """Entry point for links submitted by one caller.

    Each submitted link runs in its own `ResolutionSession`. A caller has at most one
    session in flight: submitting another link meanwhile raises
    `InterceptionInProgressError` instead of silently dropping it.
    """

    def __init__(
        self,
        classifier: URLClassifier,
        resolver: MetadataResolver,
        presenter: Optional[WaitingPresenter] = None,
        *,
        store: Optional[EntityStore] = None,
        on_direct_link: Optional[DirectLinkHandler] = None,
    ) -> None:
        self.classifier = classifier
        self.resolver = resolver
        self.store = store
        self.on_direct_link = on_direct_link
        self._presenter_ref = weakref.ref(presenter) if presenter is not None else None
        self._active: Optional[ResolutionSession] = None

    @property
    def active_session(self) -> Optional[ResolutionSession]:
        """Return the session in flight, if any."""
        return self._active

    async def resolve(self, url: str) -> ResolutionOutcome:
        """Resolve the URL in a new session.

        Raises:
            InterceptionInProgressError: If a link of this caller is still resolving.
            PresenterUnavailableError: If the presenter given at construction is gone.
        """
        if self._active is not None:
            raise InterceptionInProgressError(self._active.request.url if self._active.request else "")

        presenter = self._presenter_ref() if self._presenter_ref is not None else None
        if self._presenter_ref is not None and presenter is None:
            raise PresenterUnavailableError("the waiting presenter was released")

        session = ResolutionSession(
            self.classifier,
            self.resolver,
            presenter,
            store=self.store,
            on_direct_link=self.on_direct_link,
        )
        del presenter
        self._active = session
        try:
            return await session.run(url)
        finally:
            self._active = None

    def cancel(self) -> None:
        """Cancel the session in flight, if any."""
        if self._active is not None:
            self._active.cancel()


def _discard_result(task: asyncio.Task) -> None:
    # Retrieve the late result or exception so it is dropped silently.
    if not task.cancelled():
        task.exception()
