"""URL normalization helpers used to key the caches and classify links."""

import ipaddress
import re
from urllib.parse import urlsplit

import tldextract

from mediagrab.exceptions import InvalidURLError

SUPPORTED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

_HOST_PATTERN = re.compile(r"[\w.-]+")

# Use the public suffix list snapshot bundled with tldextract; never fetch it over the network.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def get_hostname(url: str) -> str:
    """Return the normalized hostname of a URL.

    Credentials, port, path, query and fragment are dropped, the host is lower-cased,
    a trailing dot and a leading `www.` are removed.

    Raises:
        InvalidURLError: if the URL has no parseable host.
    """
    if not url or not url.strip():
        raise InvalidURLError(url, "empty URL")

    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError as ex:
        raise InvalidURLError(url, str(ex)) from ex

    if not parts.scheme or not hostname:
        raise InvalidURLError(url)

    hostname = hostname.rstrip(".")
    if hostname.startswith("www."):
        hostname = hostname[len("www.") :]

    if not hostname or not _HOST_PATTERN.fullmatch(hostname) or ".." in hostname:
        if not _is_ip_address(hostname):
            raise InvalidURLError(url, f"malformed host {hostname!r}")

    return hostname


def extract_key(url: str) -> str:
    """Extract the cache key (registrable domain) of a URL.

    Examples:
    - https://www.google.com -> google.com
    - http://user:pw@news.bbc.co.uk:8080/path?q=1 -> bbc.co.uk
    - HTTPS://M.Facebook.com/watch -> facebook.com
    - http://127.0.0.1:8000/ -> 127.0.0.1
    - https://social.example/post/42 -> social.example

    Hosts without a known public suffix (IP literals, `localhost`, reserved TLDs) keep
    their whole hostname as the key.

    Raises:
        InvalidURLError: if the URL has no parseable host.
    """
    hostname = get_hostname(url)
    if _is_ip_address(hostname):
        return hostname

    extracted = _extract(hostname)
    if not extracted.suffix or not extracted.domain:
        return hostname

    return f"{extracted.domain}.{extracted.suffix}"


def is_valid_url(url: str) -> bool:
    """Check if the URL is a well formed http(s) URL with a parseable host."""
    try:
        get_hostname(url)
    except InvalidURLError:
        return False
    return urlsplit(url.strip()).scheme.lower() in SUPPORTED_SCHEMES


def _is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True
