"""Protocols for the collaborators a resolution session depends on.

The presentation and storage layers are not part of this package; they are handed
to the session as objects that satisfy these protocols.
"""

from typing import Any, Callable, ClassVar, Protocol


class WaitingPresenter(Protocol):
    """Display a cancellable waiting indicator while a link is being resolved.

    Implementations may raise `PresenterUnavailableError` when the hosting UI is gone;
    the session then treats the resolution as cancelled.
    """

    def show_waiting_indicator(self, message: str, on_cancel: Callable[[], None]) -> Any:
        """Show the indicator and return a handle for `dismiss`.

        `on_cancel` is called when the user cancels; it is safe to call from any thread.
        """
        ...

    def dismiss(self, handle: Any) -> None:
        """Dismiss the indicator returned by `show_waiting_indicator`."""
        ...


class StoredEntity(Protocol):
    """An entity the store can persist."""

    kind: ClassVar[str]

    @property
    def key(self) -> str:  # noqa: D102
        ...

    def model_dump_json(self) -> str:  # noqa: D102
        ...


class EntityStore(Protocol):
    """Persist resolved entities (history, queued downloads)."""

    def persist(self, entity: StoredEntity) -> None:
        """Write the entity.

        Raises:
            PersistenceError: If the entity could not be written.
        """
        ...


class DirectLinkHandler(Protocol):
    """Receive links that are handed straight to download interception."""

    def __call__(self, url: str) -> None:  # noqa: D102
        ...
