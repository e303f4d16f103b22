"""Data models for link resolution"""

import time
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Classification(Enum):
    """How a submitted URL is handled."""

    INVALID = "invalid"
    DIRECT_LINK = "direct_link"
    RICH_METADATA = "rich_metadata"


class SessionState(Enum):
    """States of a resolution session."""

    IDLE = "idle"
    CLASSIFYING = "classifying"
    DIRECT_LINK = "direct_link"
    AWAITING_METADATA = "awaiting_metadata"
    RESOLVED = "resolved"
    ABORTED = "aborted"
    FALLBACK = "fallback"

    @property
    def is_terminal(self) -> bool:
        """Return True for the states a session ends in."""
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[SessionState] = frozenset(
    {SessionState.RESOLVED, SessionState.ABORTED, SessionState.FALLBACK}
)


class ResolvedMetadata(BaseModel):
    """Title and thumbnail extracted from a page. Either may be missing."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    thumbnail_url: str | None = None

    @property
    def has_title(self) -> bool:
        """Return True if a non-blank title was extracted."""
        return bool(self.title and self.title.strip())


class ResolutionRequest(BaseModel):
    """A URL submitted to a session. Only the owning session mutates it."""

    url: str
    classification: Classification | None = None
    cancelled: bool = False
    completed: bool = False

    @property
    def is_terminal(self) -> bool:
        """Return True once the request was completed or cancelled."""
        return self.cancelled or self.completed


class ResolutionOutcome(BaseModel):
    """What a session hands back to its caller."""

    model_config = ConfigDict(frozen=True)

    url: str
    state: SessionState
    metadata: ResolvedMetadata | None = None
    error: str | None = None


class ResolvedLink(BaseModel):
    """A resolved link, persisted to the history store."""

    kind: ClassVar[str] = "resolved_link"

    url: str
    title: str
    thumbnail_url: str | None = None
    resolved_at: float = Field(default_factory=time.time)

    @property
    def key(self) -> str:
        """Return the store key of the link."""
        return self.url
