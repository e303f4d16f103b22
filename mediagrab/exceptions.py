"""mediagrab specific exceptions."""


class MediagrabError(Exception):
    """Base class for errors raised by mediagrab."""


class InvalidURLError(MediagrabError, ValueError):
    """Raised when a URL has no parseable host."""

    def __init__(self, url: str, reason: str = "no parseable host") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class FetchFailedError(MediagrabError):
    """Raised by the metadata resolver when the page content could not be fetched."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        self.detail = detail
        super().__init__(f"Failed to fetch {url}: {detail}" if detail else f"Failed to fetch {url}")


class ResolutionAbortedError(MediagrabError):
    """Raised when a metadata resolution was cancelled before its result was delivered."""

    pass


class PresenterUnavailableError(MediagrabError):
    """Raised by a waiting presenter that can no longer display or dismiss an indicator."""

    pass


class PersistenceError(MediagrabError):
    """Exception raised when an entity cannot be written to the store."""

    pass


class StoreNotInitializedError(MediagrabError, RuntimeError):
    """Raised when the store is used before `init_store` was called."""

    pass


class SessionStateError(MediagrabError, RuntimeError):
    """Raised when a resolution session is run more than once."""

    pass


class InterceptionInProgressError(MediagrabError):
    """Raised when a link is submitted while the caller's previous one is still resolving."""

    def __init__(self, active_url: str) -> None:
        self.active_url = active_url
        super().__init__(f"A link is already being resolved: {active_url}")
