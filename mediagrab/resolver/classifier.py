"""Decide whether a link needs page resolution or can be downloaded directly."""

import logging
from typing import Iterable
from urllib.parse import urlsplit

from mediagrab.configs import settings
from mediagrab.exceptions import InvalidURLError
from mediagrab.resolver.models import Classification
from mediagrab.utils.domain import get_hostname, is_valid_url

logger = logging.getLogger(__name__)

# Path extensions of resources that can be handed to the downloader as they are.
DIRECT_MEDIA_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".3gp",
        ".aac",
        ".avi",
        ".flac",
        ".m3u8",
        ".m4a",
        ".mkv",
        ".mov",
        ".mp3",
        ".mp4",
        ".mpd",
        ".ogg",
        ".opus",
        ".ts",
        ".wav",
        ".webm",
    }
)


class URLClassifier:
    """Classify URLs against a set of social and content platform domains.

    A host matches a platform domain when it is that domain or one of its subdomains,
    so `m.facebook.com` and `www.instagram.com` match `facebook.com` and
    `instagram.com`. Classification is pure: no I/O, same answer for the same URL.
    """

    rich_metadata_domains: frozenset[str]

    def __init__(self, rich_metadata_domains: Iterable[str] | None = None) -> None:
        domains = (
            rich_metadata_domains
            if rich_metadata_domains is not None
            else settings.classifier.rich_metadata_domains
        )
        self.rich_metadata_domains = frozenset(domain.strip().lower() for domain in domains)

    def is_rich_metadata_source(self, url: str) -> bool:
        """Return True if the URL belongs to a platform whose pages need resolving."""
        try:
            hostname = get_hostname(url)
        except InvalidURLError:
            return False

        labels = hostname.split(".")
        return any(".".join(labels[i:]) in self.rich_metadata_domains for i in range(len(labels)))

    def is_direct_media_url(self, url: str) -> bool:
        """Return True if the URL path ends with a known media file extension."""
        try:
            path = urlsplit(url.strip()).path.lower()
        except ValueError:
            return False
        return any(path.endswith(extension) for extension in DIRECT_MEDIA_EXTENSIONS)

    def classify(self, url: str) -> Classification:
        """Classify a URL as invalid, a direct link or a rich metadata source."""
        if not is_valid_url(url):
            return Classification.INVALID
        if self.is_rich_metadata_source(url) and not self.is_direct_media_url(url):
            return Classification.RICH_METADATA
        return Classification.DIRECT_LINK
