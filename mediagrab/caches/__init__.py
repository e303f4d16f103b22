"""Local caches for favicons and ad-block hosts"""

from mediagrab.caches.blocklist import BlockListCache, parse_host_list
from mediagrab.caches.favicons import FaviconCache
from mediagrab.caches.models import BlockListSnapshot, FaviconEntry

__all__ = [
    "BlockListCache",
    "BlockListSnapshot",
    "FaviconCache",
    "FaviconEntry",
    "parse_host_list",
]
