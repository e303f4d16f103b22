"""Extract a title and a thumbnail URL from fetched page content"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

PARSER: str = "html.parser"

THUMBNAIL_SELECTORS: tuple[str, ...] = (
    'meta[property="og:image"]',
    'meta[property="og:image:secure_url"]',
    'meta[name="twitter:image"]',
    'meta[property="twitter:image"]',
)

TITLE_SELECTORS: tuple[str, ...] = (
    'meta[property="og:title"]',
    'meta[name="twitter:title"]',
    'meta[property="twitter:title"]',
)

DESCRIPTION_SELECTORS: tuple[str, ...] = (
    'meta[property="og:description"]',
    'meta[name="description"]',
)

IMAGE_URL_PATTERN = re.compile(
    r"https?://[^\s'\"<>]+?\.(jpeg|jpg|png|gif|webp)(\?.*)?", re.IGNORECASE
)

# A non-exhaustive list of substrings of titles served by login walls and bot checks
INVALID_TITLES: list[str] = [
    "Attention Required",
    "Access denied",
    "Access to this page has been denied",
    "Just a moment...",
    "Page loading",
    "Site Maintenance",
    "502 Bad Gateway",
    "503 Service Temporarily Unavailable",
    "Your request has been blocked",
    "This page is either unavailable or restricted",
    "This page isn't available",
    "Robot or human",
    "Captcha Challenge",
    "Let us know you're not a robot",
    "Too Many Requests",
    "Log into Facebook",
    "Log in or sign up to view",
    "Login • Instagram",
    "Unsupported browser",
]


def parse_page(content: str | bytes) -> BeautifulSoup:
    """Parse page content. Bytes are decoded by BeautifulSoup from the declared charset."""
    return BeautifulSoup(content, PARSER)


def extract_thumbnail_url(content: str | bytes | BeautifulSoup) -> Optional[str]:
    """Return the first Open Graph or Twitter card image that looks like an image URL."""
    page = content if isinstance(content, BeautifulSoup) else parse_page(content)
    for selector in THUMBNAIL_SELECTORS:
        for meta in page.select(selector):
            image_url = str(meta.get("content") or "").strip()
            if image_url and IMAGE_URL_PATTERN.search(image_url):
                return image_url
    return None


def extract_title(content: str | bytes | BeautifulSoup) -> Optional[str]:
    """Return the page title.

    Open Graph and Twitter card titles are preferred, then the page description, then
    the document `<title>`. Login walls and bot checks do not count as titles.
    """
    page = content if isinstance(content, BeautifulSoup) else parse_page(content)

    candidates = [_meta_content(page, TITLE_SELECTORS), _meta_content(page, DESCRIPTION_SELECTORS)]
    if page.title is not None:
        candidates.append(page.title.get_text())

    for candidate in candidates:
        title = sanitize_title(candidate)
        if title:
            return title
    return None


def extract_description(content: str | bytes | BeautifulSoup) -> Optional[str]:
    """Return the Open Graph (or meta) description of the page."""
    page = content if isinstance(content, BeautifulSoup) else parse_page(content)
    return sanitize_title(_meta_content(page, DESCRIPTION_SELECTORS)) or None


def is_valid_title(title: Optional[str]) -> bool:
    """Check if title is valid and not an error message or bot detection."""
    if not title:
        return False

    title_lower = title.casefold()
    return not any(invalid.casefold() in title_lower for invalid in INVALID_TITLES)


def sanitize_title(title: Optional[str]) -> str:
    """Normalize whitespace and validate title content."""
    if not title:
        return ""

    normalized = " ".join(title.split())
    if normalized and is_valid_title(normalized):
        return normalized

    return ""


def _meta_content(page: BeautifulSoup, selectors: tuple[str, ...]) -> Optional[str]:
    for selector in selectors:
        meta = page.select_one(selector)
        if meta is not None and meta.get("content"):
            return str(meta["content"])
    return None
