"""Link classification and metadata resolution"""

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
from mediagrab.resolver.session import LinkInterceptor, ResolutionSession

__all__ = [
    "CancelToken",
    "Classification",
    "LinkInterceptor",
    "MetadataResolver",
    "ResolutionOutcome",
    "ResolutionRequest",
    "ResolutionSession",
    "ResolvedLink",
    "ResolvedMetadata",
    "SessionState",
    "URLClassifier",
]
